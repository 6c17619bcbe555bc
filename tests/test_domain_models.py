"""
Tests for domain models.
"""

from datetime import date, datetime, time

import pendulum
import pytest

from teamslots.domain.exceptions import InvalidGuestInfo, InvalidInterval, InvalidRule
from teamslots.domain.models import (
    END_OF_DAY,
    AvailabilityOverride,
    AvailabilityRule,
    GuestInfo,
    OverrideKind,
    Reservation,
    Slot,
    TimeRange,
)


def utc(text: str):
    return pendulum.parse(text, tz="UTC")


class TestTimeRange:
    """Tests for TimeRange model."""

    def test_create_valid_time_range(self):
        """Test creating a valid time range."""
        tr = TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 17:00"))

        assert tr.start == utc("2024-11-25 09:00")
        assert tr.duration_minutes() == 480

    def test_stored_in_utc(self):
        """Ranges given in another zone are normalised to UTC."""
        tr = TimeRange(
            start=pendulum.parse("2024-11-25 09:00", tz="Europe/Berlin"),
            end=pendulum.parse("2024-11-25 10:00", tz="Europe/Berlin"),
        )

        assert tr.start.timezone_name == "UTC"
        assert tr.start.hour == 8

    def test_invalid_time_range_raises_error(self):
        """Inverted ranges are rejected."""
        with pytest.raises(InvalidInterval, match="Start time .* must be before end time"):
            TimeRange(start=utc("2024-11-25 17:00"), end=utc("2024-11-25 09:00"))

    def test_zero_length_range_raises_value_error(self):
        """Zero-length ranges are rejected and still count as ValueError."""
        with pytest.raises(ValueError):
            TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 09:00"))

    def test_naive_datetime_rejected(self):
        """Datetimes without a timezone are ambiguous."""
        with pytest.raises(InvalidInterval, match="timezone-aware"):
            TimeRange(start=datetime(2024, 11, 25, 9), end=datetime(2024, 11, 25, 10))

    def test_overlaps_is_half_open(self):
        """Touching ranges do not overlap."""
        tr1 = TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 12:00"))
        tr2 = TimeRange(start=utc("2024-11-25 11:00"), end=utc("2024-11-25 14:00"))
        tr3 = TimeRange(start=utc("2024-11-25 12:00"), end=utc("2024-11-25 17:00"))

        assert tr1.overlaps(tr2)
        assert tr2.overlaps(tr1)
        assert not tr1.overlaps(tr3)

    def test_intersect(self):
        """Test intersection calculation."""
        tr1 = TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 12:00"))
        tr2 = TimeRange(start=utc("2024-11-25 11:00"), end=utc("2024-11-25 14:00"))

        intersection = tr1.intersect(tr2)

        assert intersection == TimeRange(start=utc("2024-11-25 11:00"), end=utc("2024-11-25 12:00"))
        assert tr1.intersect(
            TimeRange(start=utc("2024-11-25 14:00"), end=utc("2024-11-25 15:00"))
        ) is None

    def test_contains(self):
        outer = TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 12:00"))

        assert outer.contains(TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 12:00")))
        assert not outer.contains(TimeRange(start=utc("2024-11-25 11:00"), end=utc("2024-11-25 13:00")))


class TestAvailabilityRule:
    """Tests for eager rule validation."""

    def test_invalid_day(self):
        with pytest.raises(InvalidRule, match="day_of_week"):
            AvailabilityRule(day_of_week=7, start_time=time(9), end_time=time(17), timezone="UTC")

    def test_start_must_precede_end(self):
        """Rules never span midnight."""
        with pytest.raises(InvalidRule):
            AvailabilityRule(day_of_week=0, start_time=time(22), end_time=time(2), timezone="UTC")

    def test_unknown_timezone(self):
        with pytest.raises(InvalidRule, match="timezone"):
            AvailabilityRule(day_of_week=0, start_time=time(9), end_time=time(17), timezone="Mars/Olympus")

    def test_effective_range_order(self):
        with pytest.raises(InvalidRule):
            AvailabilityRule(
                day_of_week=0,
                start_time=time(9),
                end_time=time(17),
                timezone="UTC",
                effective_from=date(2024, 12, 1),
                effective_until=date(2024, 11, 1),
            )

    def test_applies_on(self):
        """A Monday rule applies on Mondays inside its effective dates only."""
        rule = AvailabilityRule(
            day_of_week=0,
            start_time=time(9),
            end_time=time(17),
            timezone="UTC",
            effective_from=date(2024, 11, 18),
            effective_until=date(2024, 11, 25),
        )

        assert rule.applies_on(date(2024, 11, 25))
        assert not rule.applies_on(date(2024, 11, 26))  # Tuesday
        assert not rule.applies_on(date(2024, 11, 11))  # before effective_from
        assert not rule.applies_on(date(2024, 12, 2))  # after effective_until

    def test_end_of_day_rule(self):
        """An END_OF_DAY rule runs until the next local midnight."""
        rule = AvailabilityRule(day_of_week=0, start_time=time(22), end_time=END_OF_DAY, timezone="UTC")

        interval = rule.interval_on(date(2024, 11, 25))

        assert interval.end == utc("2024-11-26 00:00")


class TestAvailabilityOverride:
    """Tests for override construction."""

    def test_whole_day_override(self):
        override = AvailabilityOverride.for_date("remove", date(2024, 11, 25), "Europe/Berlin")

        assert override.kind is OverrideKind.REMOVE
        assert override.interval.start == utc("2024-11-24 23:00")
        assert override.interval.end == utc("2024-11-25 23:00")

    def test_partial_override(self):
        override = AvailabilityOverride.for_date(
            OverrideKind.ADD, date(2024, 11, 25), "UTC", time(18), time(19)
        )

        assert override.interval.duration_minutes() == 60

    def test_needs_both_times(self):
        with pytest.raises(InvalidRule):
            AvailabilityOverride.for_date("add", date(2024, 11, 25), "UTC", start_time=time(9))

    def test_unknown_kind(self):
        with pytest.raises(InvalidRule):
            AvailabilityOverride.for_date("maybe", date(2024, 11, 25), "UTC")


class TestGuestInfo:
    """Tests for guest validation."""

    def test_email_is_normalised(self):
        guest = GuestInfo(name="  Ada ", email=" Ada@Example.COM ")

        assert guest.name == "Ada"
        assert guest.email == "ada@example.com"

    @pytest.mark.parametrize("email", ["", "ada", "ada@example", "a da@example.com"])
    def test_invalid_email(self, email):
        with pytest.raises(InvalidGuestInfo):
            GuestInfo(name="Ada", email=email)

    def test_name_required(self):
        with pytest.raises(InvalidGuestInfo, match="name"):
            GuestInfo(name=" ", email="ada@example.com")


class TestReservation:
    """Tests for reservation records."""

    def test_serialisation_keeps_all_fields(self):
        reservation = Reservation(
            id="r1",
            member_id="alice",
            interval=TimeRange(start=utc("2024-11-25 10:00"), end=utc("2024-11-25 11:00")),
            guest_name="Ada",
            guest_email="ada@example.com",
            created_at=utc("2024-11-20 08:00"),
            idempotency_key="k1",
            notes="Intro call",
            guest_timezone="Europe/Berlin",
            calendar_verified=False,
        ).cancel(utc("2024-11-21 08:00"))

        restored = Reservation.from_dict(reservation.to_dict())

        assert restored == reservation
        assert not restored.is_active


class TestSlot:
    """Tests for slot display."""

    def test_display_in_caller_timezone(self):
        """The instant stays UTC, the display follows the caller's zone."""
        slot = Slot(
            member_id="alice",
            interval=TimeRange(start=utc("2024-11-25 09:00"), end=utc("2024-11-25 10:00")),
            timezone="America/New_York",
        )

        assert slot.interval.start.hour == 9
        assert slot.start.hour == 4
        assert slot.to_dict()["start"].endswith("-05:00")
        assert slot.format_display() == "Monday, 2024-11-25 | 04:00 - 05:00 (60 min)"
