"""
Busy-calendar source that reads busy events from a JSON file.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import pendulum
from pendulum import DateTime

from ..domain.exceptions import AdapterUnavailable, InvalidInterval
from ..domain.models import TimeRange

logger = logging.getLogger(__name__)


class FileBusyCalendar:
    """
    Serves busy intervals from a JSON export.

    The file holds a list of events:
    [{"calendarId": "alice@example.com", "start": "...", "end": "..."}]

    The file is re-read on every query, so edits show up without a
    restart and nothing is cached between booking decisions.
    """

    def __init__(self, data_file: Path, default_timezone: str = "UTC"):
        """
        Initialize the file source.

        Args:
            data_file: Path to the JSON events file
            default_timezone: Zone applied to timestamps without an offset
        """
        self.data_file = Path(data_file)
        self.default_timezone = default_timezone

    async def get_busy_intervals(
        self,
        calendar_ref: str,
        start_time: DateTime,
        end_time: DateTime,
    ) -> List[TimeRange]:
        events = await asyncio.to_thread(self._load_events)
        busy: List[TimeRange] = []

        for event in events:
            if event.get("calendarId") != calendar_ref:
                continue

            try:
                event_range = TimeRange(
                    start=pendulum.parse(event["start"], tz=self.default_timezone),
                    end=pendulum.parse(event["end"], tz=self.default_timezone),
                )
            except (KeyError, ValueError, InvalidInterval) as exc:
                logger.warning("Skipping invalid busy event in %s: %s", self.data_file, exc)
                continue

            if event_range.start < end_time and event_range.end > start_time:
                busy.append(event_range)

        return busy

    def _load_events(self) -> List[Dict[str, Any]]:
        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise AdapterUnavailable(f"Could not read busy calendar file {self.data_file}: {exc}") from exc

        if not isinstance(data, list):
            raise AdapterUnavailable(f"Busy calendar file {self.data_file} must contain a list of events")
        return data
