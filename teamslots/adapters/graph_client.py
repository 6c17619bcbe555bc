"""
Microsoft Graph API client for fetching busy intervals.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import AdapterUnavailable, InvalidInterval
from ..domain.models import TimeRange

logger = logging.getLogger(__name__)

# Statuses that block a slot. "free" is the only one that doesn't.
BUSY_STATUSES = ("busy", "tentative", "oof", "workingelsewhere")


class GraphBusyCalendar:
    """
    Busy-calendar source backed by Microsoft Graph.

    Uses the /calendar/getSchedule endpoint to fetch free/busy information.
    The access token is obtained elsewhere and handed in as-is.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

    def __init__(self, access_token: str, timeout_seconds: float = 10.0):
        """
        Initialize the Graph API client.

        Args:
            access_token: Valid Microsoft Graph access token
            timeout_seconds: HTTP timeout per request
        """
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def get_busy_intervals(
        self,
        calendar_ref: str,
        start_time: DateTime,
        end_time: DateTime,
    ) -> List[TimeRange]:
        """
        Get busy intervals for one mailbox.

        Args:
            calendar_ref: Mailbox address of the schedule to query
            start_time: Start of the time window
            end_time: End of the time window

        Returns:
            Busy TimeRange objects in UTC

        Raises:
            AdapterUnavailable: If the API call fails
        """
        return await asyncio.to_thread(
            self._fetch_schedule, calendar_ref, start_time, end_time
        )

    def _fetch_schedule(
        self,
        calendar_ref: str,
        start_time: DateTime,
        end_time: DateTime,
    ) -> List[TimeRange]:
        url = f"{self.GRAPH_API_ENDPOINT}/me/calendar/getSchedule"

        # Ask for UTC so returned wall-clock values need no offset guessing
        payload = {
            "schedules": [calendar_ref],
            "startTime": {
                "dateTime": start_time.in_timezone("UTC").format("YYYY-MM-DD[T]HH:mm:ss"),
                "timeZone": "UTC",
            },
            "endTime": {
                "dateTime": end_time.in_timezone("UTC").format("YYYY-MM-DD[T]HH:mm:ss"),
                "timeZone": "UTC",
            },
            "availabilityViewInterval": 15,
        }

        try:
            response = requests.post(
                url,
                headers=self.headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()

        except (requests.exceptions.RequestException, ValueError) as e:
            raise AdapterUnavailable(f"Failed to fetch schedule from Microsoft Graph: {e}") from e

        return self._parse_schedule_response(data, calendar_ref)

    def _parse_schedule_response(
        self,
        response_data: Any,
        calendar_ref: str,
    ) -> List[TimeRange]:
        """
        Parse the getSchedule API response into busy ranges.

        Response format:
        {
            "value": [
                {
                    "scheduleId": "user@example.com",
                    "scheduleItems": [
                        {
                            "status": "busy",
                            "start": {"dateTime": "...", "timeZone": "UTC"},
                            "end": {"dateTime": "...", "timeZone": "UTC"}
                        }
                    ]
                }
            ]
        }
        """
        if not isinstance(response_data, dict) or not isinstance(response_data.get("value"), list):
            raise AdapterUnavailable(f"Malformed getSchedule response for {calendar_ref}")

        schedules = [
            schedule
            for schedule in response_data["value"]
            if isinstance(schedule, dict)
            and str(schedule.get("scheduleId", "")).lower() == calendar_ref.lower()
        ]
        if not schedules:
            raise AdapterUnavailable(f"No schedule returned for {calendar_ref}")

        schedule = schedules[0]
        error = schedule.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            raise AdapterUnavailable(f"Schedule lookup failed for {calendar_ref}: {message}")

        items = schedule.get("scheduleItems", [])
        if not isinstance(items, list):
            raise AdapterUnavailable(f"Malformed scheduleItems for {calendar_ref}")

        busy_ranges: List[TimeRange] = []

        for item in items:
            if not isinstance(item, dict):
                logger.warning("Skipping schedule item for %s: %r", calendar_ref, item)
                continue
            if str(item.get("status", "")).lower() not in BUSY_STATUSES:
                continue
            try:
                start = self._parse_datetime(item["start"])
                end = self._parse_datetime(item["end"])
                busy_ranges.append(TimeRange(start=start, end=end))

            except (KeyError, TypeError, AttributeError, ValueError, InvalidInterval) as e:
                logger.warning("Could not parse schedule item for %s: %s", calendar_ref, e)
                continue

        return busy_ranges

    @staticmethod
    def _parse_datetime(value: Dict[str, str]) -> DateTime:
        """Parse a Graph dateTimeTimeZone object into an aware DateTime."""
        # Graph sends 7 fractional digits; schedule items are minute-aligned
        raw = value["dateTime"].split(".")[0]
        parsed = pendulum.parse(raw, tz=value.get("timeZone") or "UTC")
        if not isinstance(parsed, DateTime):
            raise ValueError(f"Could not parse datetime: {value['dateTime']}")
        return parsed
