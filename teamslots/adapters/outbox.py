"""
Hand-off of confirmations to notification collaborators.

Booking only enqueues; delivery happens on a separate consumer, so mail
or calendar-provider latency never adds to booking latency.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Protocol

from ..domain.invite import Confirmation

logger = logging.getLogger(__name__)


class ConfirmationSink(Protocol):
    """Anything that can deliver confirmation content."""

    async def deliver(self, confirmation: Confirmation) -> None:
        ...


class ConfirmationOutbox:
    """Queue of confirmations waiting for delivery."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Confirmation]" = asyncio.Queue()

    def publish(self, confirmation: Confirmation) -> None:
        self._queue.put_nowait(confirmation)
        logger.debug("Queued confirmation %s", confirmation.invite.uid)

    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(self, sink: ConfirmationSink) -> int:
        """Deliver everything currently queued and return how many succeeded."""
        delivered = 0
        while not self._queue.empty():
            confirmation = self._queue.get_nowait()
            if await self._deliver(sink, confirmation):
                delivered += 1
        return delivered

    async def run(self, sink: ConfirmationSink) -> None:
        """Consume confirmations until cancelled."""
        while True:
            confirmation = await self._queue.get()
            await self._deliver(sink, confirmation)

    async def _deliver(self, sink: ConfirmationSink, confirmation: Confirmation) -> bool:
        try:
            await sink.deliver(confirmation)
        except Exception:
            # The reservation is already committed; a failed delivery must not undo it.
            logger.exception("Delivery of confirmation %s failed", confirmation.invite.uid)
            return False
        finally:
            self._queue.task_done()
        return True


class IcsDirectorySink:
    """Writes each confirmation's invite to ``<directory>/<uid>.ics``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.written: List[Path] = []

    async def deliver(self, confirmation: Confirmation) -> None:
        path = await asyncio.to_thread(self._write, confirmation)
        self.written.append(path)

    def _write(self, confirmation: Confirmation) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        safe_uid = confirmation.invite.uid.replace("/", "_").replace("@", "_at_")
        path = self.directory / f"{safe_uid}.ics"
        # newline="" keeps the CRLF line endings the format requires
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(confirmation.invite.to_ics())
        logger.info("Exported invite %s to %s", confirmation.invite.uid, path)
        return path


class LoggingSink:
    """Logs confirmations; used when no export directory is configured."""

    async def deliver(self, confirmation: Confirmation) -> None:
        display = confirmation.display_fields()
        logger.info(
            "Confirmation %s: %s with %s on %s %s (%s)",
            confirmation.invite.uid,
            display["guest"],
            display["member"],
            display["date"],
            display["time"],
            display["timezone"],
        )
