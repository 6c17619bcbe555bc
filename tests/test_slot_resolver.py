"""
Tests for SlotResolver using stubbed busy calendars.
"""

import asyncio
from datetime import time, timedelta
from typing import List, Optional

import pendulum
import pytest

from teamslots.adapters.reservation_store import InMemoryReservationStore
from teamslots.domain.exceptions import AdapterUnavailable, UnknownMember
from teamslots.domain.models import AvailabilityRule, GuestInfo, Member, TimeRange
from teamslots.services.ledger import ReservationLedger
from teamslots.services.member_directory import MemberDirectory
from teamslots.services.slot_resolver import SlotCheck, SlotResolver

FIXED_NOW = pendulum.parse("2024-11-20 08:00", tz="UTC")
HOUR = timedelta(hours=1)


def utc(text: str):
    return pendulum.parse(text, tz="UTC")


def tr(start: str, end: str) -> TimeRange:
    return TimeRange(start=utc(start), end=utc(end))


class StubBusyCalendar:
    """Busy calendar returning canned intervals, failing, or hanging."""

    def __init__(self, busy: Optional[List[TimeRange]] = None, error: Optional[Exception] = None, delay: float = 0):
        self.busy = busy or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def get_busy_intervals(self, calendar_ref, start_time, end_time):
        self.calls.append((calendar_ref, start_time, end_time))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.busy)


def build_resolver(busy_calendar=None, *, clock=lambda: FIXED_NOW, calendar_ref="alice@example.com"):
    directory = MemberDirectory()
    directory.add_member(
        Member(id="alice", name="Alice", timezone="UTC", external_calendar_ref=calendar_ref)
    )
    directory.add_rule(
        "alice",
        AvailabilityRule(day_of_week=0, start_time=time(9), end_time=time(12), timezone="UTC"),
    )
    ledger = ReservationLedger(InMemoryReservationStore(), clock=clock)
    resolver = SlotResolver(
        directory, ledger, busy_calendar, busy_timeout_seconds=0.05, clock=clock
    )
    return resolver, directory, ledger


def starts(listing):
    return [slot.interval.start.format("HH:mm") for slot in listing]


class TestListSlots:
    """Tests for slot listing."""

    def test_without_busy_calendar(self):
        resolver, _, _ = build_resolver()

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        assert starts(listing) == ["09:00", "10:00", "11:00"]
        assert listing.verified

    def test_busy_intervals_subtracted(self):
        busy = StubBusyCalendar(busy=[tr("2024-11-25 10:15", "2024-11-25 10:45")])
        resolver, _, _ = build_resolver(busy)

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        # 09-10 survives; 10:45-12:00 re-grids from 10:45
        assert starts(listing) == ["09:00", "10:45"]
        assert busy.calls[0][0] == "alice@example.com"

    def test_busy_lookup_is_not_cached(self):
        busy = StubBusyCalendar()
        resolver, _, _ = build_resolver(busy)

        async def scenario():
            await resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
            busy.busy = [tr("2024-11-25 09:00", "2024-11-25 12:00")]
            return await resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)

        listing = asyncio.run(scenario())

        assert len(busy.calls) == 2
        assert len(listing) == 0

    def test_adapter_failure_degrades(self):
        """An unavailable calendar yields rule-only slots flagged as unverified."""
        resolver, _, _ = build_resolver(StubBusyCalendar(error=AdapterUnavailable("down")))

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        assert starts(listing) == ["09:00", "10:00", "11:00"]
        assert listing.degraded
        assert not listing.verified

    def test_adapter_timeout_degrades(self):
        resolver, _, _ = build_resolver(StubBusyCalendar(delay=1.0))

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        assert listing.degraded
        assert len(listing) == 3

    def test_member_without_calendar_ref_skips_lookup(self):
        busy = StubBusyCalendar(error=AdapterUnavailable("down"))
        resolver, _, _ = build_resolver(busy, calendar_ref=None)

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        assert busy.calls == []
        assert not listing.degraded

    def test_reservations_subtracted(self):
        resolver, _, ledger = build_resolver()

        async def scenario():
            await ledger.reserve_if_free(
                "alice", tr("2024-11-25 10:00", "2024-11-25 11:00"), GuestInfo("Ada", "ada@example.com"), "k1"
            )
            return await resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)

        assert starts(asyncio.run(scenario())) == ["09:00", "11:00"]

    def test_caller_timezone_changes_display_only(self):
        resolver, _, _ = build_resolver()

        listing = asyncio.run(
            resolver.list_slots(
                "alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR, "America/New_York"
            )
        )

        assert listing.timezone == "America/New_York"
        assert [slot.start.hour for slot in listing] == [4, 5, 6]
        assert listing.slots[0].interval.start == utc("2024-11-25 09:00")

    def test_past_slots_excluded(self):
        resolver, _, _ = build_resolver(clock=lambda: utc("2024-11-25 10:30"))

        listing = asyncio.run(
            resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
        )

        assert starts(listing) == ["11:00"]

    def test_disabled_member(self):
        resolver, directory, _ = build_resolver()
        directory.disable_member("alice")

        with pytest.raises(UnknownMember):
            asyncio.run(
                resolver.list_slots("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"), HOUR)
            )


class TestCheckSlot:
    """Tests for booking-time re-validation."""

    def test_free(self):
        resolver, _, _ = build_resolver()

        check, degraded = asyncio.run(
            resolver.check_slot("alice", tr("2024-11-25 10:00", "2024-11-25 11:00"), HOUR)
        )

        assert check is SlotCheck.FREE
        assert not degraded

    def test_misaligned_is_not_offered(self):
        resolver, _, _ = build_resolver()

        check, _ = asyncio.run(
            resolver.check_slot("alice", tr("2024-11-25 10:15", "2024-11-25 11:15"), HOUR)
        )

        assert check is SlotCheck.NOT_OFFERED

    def test_wrong_length_is_not_offered(self):
        resolver, _, _ = build_resolver()

        check, _ = asyncio.run(
            resolver.check_slot("alice", tr("2024-11-25 10:00", "2024-11-25 10:30"), HOUR)
        )

        assert check is SlotCheck.NOT_OFFERED

    def test_reserved_is_taken(self):
        resolver, _, ledger = build_resolver()
        interval = tr("2024-11-25 10:00", "2024-11-25 11:00")

        async def scenario():
            await ledger.reserve_if_free("alice", interval, GuestInfo("Ada", "ada@example.com"), "k1")
            return await resolver.check_slot("alice", interval, HOUR)

        check, _ = asyncio.run(scenario())

        assert check is SlotCheck.TAKEN

    def test_externally_busy_is_not_offered(self):
        busy = StubBusyCalendar(busy=[tr("2024-11-25 10:00", "2024-11-25 11:00")])
        resolver, _, _ = build_resolver(busy)

        check, _ = asyncio.run(
            resolver.check_slot("alice", tr("2024-11-25 10:00", "2024-11-25 11:00"), HOUR)
        )

        assert check is SlotCheck.NOT_OFFERED
