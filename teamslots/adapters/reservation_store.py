"""
Durable storage for reservations, one record set per member.

Stores do no locking of their own: the ReservationLedger only touches a
member's records while holding that member's exclusive section.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote

from ..domain.models import Reservation

logger = logging.getLogger(__name__)

class InMemoryReservationStore:
    """Keeps reservations in process memory. Used for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._records: Dict[str, List[Reservation]] = {}

    async def load(self, member_id: str) -> List[Reservation]:
        return list(self._records.get(member_id, []))

    async def save(self, member_id: str, reservations: List[Reservation]) -> None:
        self._records[member_id] = list(reservations)


class JsonReservationStore:
    """
    Persists each member's reservations in ``<directory>/<quoted member_id>.json``.

    Writes go to a temporary file that atomically replaces the old one, so
    a crash mid-write never leaves a half-written record set.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, member_id: str) -> Path:
        # Percent-encoding keeps distinct member ids in distinct files
        return self.directory / f"{quote(member_id, safe='')}.json"

    async def load(self, member_id: str) -> List[Reservation]:
        return await asyncio.to_thread(self._read, member_id)

    async def save(self, member_id: str, reservations: List[Reservation]) -> None:
        await asyncio.to_thread(self._write, member_id, reservations)

    def _read(self, member_id: str) -> List[Reservation]:
        path = self.path_for(member_id)
        if not path.exists():
            return []

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        return [Reservation.from_dict(item) for item in data.get("reservations", [])]

    def _write(self, member_id: str, reservations: List[Reservation]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(member_id)
        payload = {
            "member_id": member_id,
            "reservations": [reservation.to_dict() for reservation in reservations],
        }

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug("Wrote %d reservation(s) for %s to %s", len(reservations), member_id, path)
