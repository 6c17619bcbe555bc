"""
Resolution of bookable slots for a member.

The resolver gathers the three inputs (published availability, external
busy intervals, existing reservations) and hands them to the pure
``SlotCalculator``. Nothing is cached between calls: busy data and
reservations change over time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Protocol

import pendulum
from pendulum import DateTime

from ..domain.exceptions import AdapterUnavailable
from ..domain.models import Member, SlotListing, TimeRange, to_utc
from ..domain.slot_calculator import SlotCalculator, subtract_ranges
from .ledger import ReservationLedger
from .member_directory import MemberDirectory

logger = logging.getLogger(__name__)

# Candidate availability is computed over whole days around the request, so
# the slot grid of a free interval doesn't depend on where the window starts.
PADDING = timedelta(days=1)


class BusyCalendarProtocol(Protocol):
    """Protocol describing the busy-calendar collaborator needed by the resolver."""

    async def get_busy_intervals(
        self,
        calendar_ref: str,
        start_time: DateTime,
        end_time: DateTime,
    ) -> List[TimeRange]:
        """Return busy ranges, or raise AdapterUnavailable."""


class SlotCheck(str, Enum):
    """How a requested interval relates to the current slot grid."""
    FREE = "free"
    TAKEN = "taken"
    NOT_OFFERED = "not_offered"


@dataclass(frozen=True)
class _Resolution:
    open_intervals: List[TimeRange]
    free_intervals: List[TimeRange]
    degraded: bool


def _utc_now() -> DateTime:
    return pendulum.now("UTC")


class SlotResolver:
    """
    Computes free, slot-aligned intervals for a member.

    Dependency inversion toward a protocol makes it easy to plug in the
    Microsoft Graph adapter, the JSON file source, or a stub in tests.
    """

    def __init__(
        self,
        directory: MemberDirectory,
        ledger: ReservationLedger,
        busy_calendar: Optional[BusyCalendarProtocol] = None,
        *,
        slot_calculator: Optional[SlotCalculator] = None,
        busy_timeout_seconds: Optional[float] = 10.0,
        clock: Callable[[], DateTime] = _utc_now,
    ) -> None:
        self._directory = directory
        self._ledger = ledger
        self._busy_calendar = busy_calendar
        self._calculator = slot_calculator or SlotCalculator()
        self._busy_timeout = busy_timeout_seconds
        self._clock = clock

    async def list_slots(
        self,
        member_id: str,
        range_start: datetime,
        range_end: datetime,
        slot_duration: timedelta,
        caller_timezone: Optional[str] = None,
    ) -> SlotListing:
        """
        Offerable slots for [range_start, range_end), displayed in
        ``caller_timezone`` (the member's zone by default).
        """
        member = self._directory.get_active(member_id)
        window = TimeRange(start=range_start, end=range_end)
        timezone = caller_timezone or member.timezone

        resolution = await self._resolve(member, window)
        slots = self._calculator.quantize(
            resolution.free_intervals,
            slot_duration,
            member_id=member.id,
            window=window,
            not_before=to_utc(self._clock()),
            timezone=timezone,
        )

        if resolution.degraded:
            logger.warning(
                "Slots for %s are unverified against the external calendar", member.id
            )

        return SlotListing(
            member_id=member.id,
            timezone=timezone,
            slots=slots,
            degraded=resolution.degraded,
        )

    async def check_slot(
        self,
        member_id: str,
        interval: TimeRange,
        slot_duration: timedelta,
    ) -> tuple[SlotCheck, bool]:
        """
        Re-validate a requested interval against a fresh resolution.

        Returns the check result and whether the busy lookup degraded.
        TAKEN means the interval sits on the availability grid but an
        active reservation now overlaps it.
        """
        member = self._directory.get_active(member_id)
        if interval.duration() != slot_duration:
            return SlotCheck.NOT_OFFERED, False

        window = TimeRange(start=interval.start - PADDING, end=interval.end + PADDING)
        resolution = await self._resolve(member, window)
        not_before = to_utc(self._clock())

        def offered(free_intervals: List[TimeRange]) -> bool:
            slots = self._calculator.quantize(
                free_intervals,
                slot_duration,
                member_id=member.id,
                window=interval,
                not_before=not_before,
            )
            return any(slot.interval == interval for slot in slots)

        if offered(resolution.free_intervals):
            return SlotCheck.FREE, resolution.degraded
        if offered(resolution.open_intervals):
            return SlotCheck.TAKEN, resolution.degraded
        return SlotCheck.NOT_OFFERED, resolution.degraded

    async def _resolve(self, member: Member, window: TimeRange) -> _Resolution:
        padded_start = window.start.in_timezone(member.timezone).start_of("day") - PADDING
        padded_end = window.end.in_timezone(member.timezone).end_of("day") + PADDING

        candidates = self._directory.rule_set(member.id).candidate_intervals(padded_start, padded_end)
        busy, degraded = await self._busy_intervals(member, padded_start, padded_end)
        open_intervals = subtract_ranges(candidates, busy)

        reserved = await self._ledger.active_between(
            member.id, TimeRange(start=padded_start, end=padded_end)
        )
        free_intervals = self._calculator.free_intervals(open_intervals, reserved)

        return _Resolution(
            open_intervals=open_intervals,
            free_intervals=free_intervals,
            degraded=degraded,
        )

    async def _busy_intervals(
        self,
        member: Member,
        start: DateTime,
        end: DateTime,
    ) -> tuple[List[TimeRange], bool]:
        if self._busy_calendar is None or not member.external_calendar_ref:
            return [], False

        try:
            busy = await asyncio.wait_for(
                self._busy_calendar.get_busy_intervals(member.external_calendar_ref, start, end),
                self._busy_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Busy calendar lookup for %s timed out after %ss", member.id, self._busy_timeout
            )
            return [], True
        except AdapterUnavailable as exc:
            logger.warning("Busy calendar unavailable for %s: %s", member.id, exc)
            return [], True

        return list(busy), False
