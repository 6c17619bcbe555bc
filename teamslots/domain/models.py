"""
Domain models for availability, slots and reservations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import pendulum
from pendulum import DateTime

from .exceptions import InvalidGuestInfo, InvalidInterval, InvalidRule

UTC = "UTC"

# Marks a rule or override that runs until the following local midnight.
END_OF_DAY = time.max

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def to_utc(value: datetime) -> DateTime:
    """Normalise an aware datetime to a pendulum DateTime in UTC."""
    if value.tzinfo is None:
        raise InvalidInterval(f"Datetime {value} must be timezone-aware")
    return pendulum.instance(value).in_timezone(UTC)


def validate_timezone(name: str) -> str:
    """Return the IANA name unchanged, raising InvalidRule if it is unknown."""
    if not name or not isinstance(name, str):
        raise InvalidRule(f"Timezone must be a non-empty IANA name, got {name!r}")
    try:
        pendulum.timezone(name)
    except (ValueError, KeyError) as exc:
        raise InvalidRule(f"Unknown timezone: {name!r}") from exc
    return name


def local_datetime(on: date, at: time, timezone: str) -> DateTime:
    """
    Combine a local date and wall-clock time in ``timezone``.

    DST is resolved by the IANA rules for that date. ``END_OF_DAY`` maps
    to the next local midnight.
    """
    if at == END_OF_DAY:
        following = on + timedelta(days=1)
        return pendulum.datetime(following.year, following.month, following.day, tz=timezone)
    return pendulum.datetime(
        on.year, on.month, on.day, at.hour, at.minute, at.second, tz=timezone
    )


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range [start, end).

    Both ends are stored in UTC. Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        object.__setattr__(self, "start", to_utc(self.start))
        object.__setattr__(self, "end", to_utc(self.end))
        if self.start >= self.end:
            raise InvalidInterval(f"Start time {self.start} must be before end time {self.end}")

    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int(self.duration().total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeRange") -> bool:
        """Check if ``other`` lies completely inside this range."""
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        return TimeRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def in_timezone(self, timezone: str) -> tuple[DateTime, DateTime]:
        """Return (start, end) expressed in ``timezone``."""
        return self.start.in_timezone(timezone), self.end.in_timezone(timezone)

    def to_dict(self) -> Dict[str, str]:
        return {
            "start": self.start.to_iso8601_string(),
            "end": self.end.to_iso8601_string(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeRange":
        return cls(start=pendulum.parse(data["start"]), end=pendulum.parse(data["end"]))

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')} UTC"


@dataclass(frozen=True)
class AvailabilityRule:
    """
    A recurring weekly availability window for one member.

    ``day_of_week`` uses 0=Monday ... 6=Sunday. Windows never cross
    midnight; a night shift is expressed as two rules.
    """
    day_of_week: int
    start_time: time
    end_time: time
    timezone: str
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None  # inclusive

    def __post_init__(self):
        if not isinstance(self.day_of_week, int) or not 0 <= self.day_of_week <= 6:
            raise InvalidRule(f"day_of_week must be between 0 and 6, got {self.day_of_week!r}")
        if not isinstance(self.start_time, time) or not isinstance(self.end_time, time):
            raise InvalidRule("start_time and end_time must be time values")
        if self.start_time >= self.end_time:
            raise InvalidRule(
                f"Rule start {self.start_time} must be before end {self.end_time} on the same day"
            )
        validate_timezone(self.timezone)
        if (
            self.effective_from is not None
            and self.effective_until is not None
            and self.effective_until < self.effective_from
        ):
            raise InvalidRule(
                f"effective_until {self.effective_until} precedes effective_from {self.effective_from}"
            )

    @property
    def weekday_name(self) -> str:
        return WEEKDAY_NAMES[self.day_of_week]

    def applies_on(self, on: date) -> bool:
        """Check whether the rule is in force on a local calendar date."""
        if on.weekday() != self.day_of_week:
            return False
        if self.effective_from is not None and on < self.effective_from:
            return False
        if self.effective_until is not None and on > self.effective_until:
            return False
        return True

    def interval_on(self, on: date) -> Optional[TimeRange]:
        """
        Materialise the rule for a date using the rule's own timezone.

        Returns None when the whole window falls into a DST gap on that date.
        """
        start = local_datetime(on, self.start_time, self.timezone)
        end = local_datetime(on, self.end_time, self.timezone)
        if end <= start:
            return None
        return TimeRange(start=start, end=end)


class OverrideKind(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class AvailabilityOverride:
    """A one-off interval that adds or removes availability."""
    kind: OverrideKind
    interval: TimeRange

    @classmethod
    def for_date(
        cls,
        kind: OverrideKind | str,
        on: date,
        timezone: str,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> "AvailabilityOverride":
        """
        Build an override from a local date and optional wall-clock times.

        Without times the override covers the whole local day.
        """
        try:
            kind = OverrideKind(kind)
        except ValueError as exc:
            raise InvalidRule(f"Unknown override kind: {kind!r}") from exc
        validate_timezone(timezone)

        if (start_time is None) != (end_time is None):
            raise InvalidRule("Override needs both start and end time, or neither")
        start_time = start_time or time(0, 0)
        end_time = end_time or END_OF_DAY
        if start_time >= end_time:
            raise InvalidRule(f"Override start {start_time} must be before end {end_time}")

        start = local_datetime(on, start_time, timezone)
        end = local_datetime(on, end_time, timezone)
        if end <= start:
            raise InvalidRule(
                f"Override {start_time}-{end_time} on {on} falls inside a DST gap in {timezone}"
            )
        return cls(kind=kind, interval=TimeRange(start=start, end=end))


@dataclass
class Member:
    """A team member whose calendar can be booked."""
    id: str
    name: str
    timezone: str = UTC
    team: Optional[str] = None
    email: Optional[str] = None
    external_calendar_ref: Optional[str] = None
    slot_duration_minutes: Optional[int] = None
    active: bool = True

    def __post_init__(self):
        validate_timezone(self.timezone)
        if self.slot_duration_minutes is not None and self.slot_duration_minutes <= 0:
            raise InvalidRule("slot_duration_minutes must be greater than zero")


@dataclass(frozen=True)
class GuestInfo:
    """Details supplied by the external guest."""
    name: str
    email: str
    notes: Optional[str] = None
    timezone: Optional[str] = None

    def __post_init__(self):
        name = (self.name or "").strip()
        email = (self.email or "").strip().lower()
        if not name:
            raise InvalidGuestInfo("Guest name is required")
        if not _EMAIL_PATTERN.match(email):
            raise InvalidGuestInfo(f"Invalid guest email: {self.email!r}")
        if self.timezone is not None:
            try:
                validate_timezone(self.timezone)
            except InvalidRule as exc:
                raise InvalidGuestInfo(str(exc)) from exc
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "email", email)


@dataclass(frozen=True)
class Reservation:
    """A committed, conflict-checked booking."""
    id: str
    member_id: str
    interval: TimeRange
    guest_name: str
    guest_email: str
    created_at: DateTime
    idempotency_key: str
    notes: Optional[str] = None
    guest_timezone: Optional[str] = None
    calendar_verified: bool = True
    cancelled_at: Optional[DateTime] = None

    @property
    def is_active(self) -> bool:
        return self.cancelled_at is None

    def cancel(self, when: DateTime) -> "Reservation":
        return replace(self, cancelled_at=to_utc(when))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "interval": self.interval.to_dict(),
            "guest_name": self.guest_name,
            "guest_email": self.guest_email,
            "created_at": self.created_at.to_iso8601_string(),
            "idempotency_key": self.idempotency_key,
            "notes": self.notes,
            "guest_timezone": self.guest_timezone,
            "calendar_verified": self.calendar_verified,
            "cancelled_at": self.cancelled_at.to_iso8601_string() if self.cancelled_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reservation":
        cancelled_at = data.get("cancelled_at")
        return cls(
            id=data["id"],
            member_id=data["member_id"],
            interval=TimeRange.from_dict(data["interval"]),
            guest_name=data["guest_name"],
            guest_email=data["guest_email"],
            created_at=to_utc(pendulum.parse(data["created_at"])),
            idempotency_key=data["idempotency_key"],
            notes=data.get("notes"),
            guest_timezone=data.get("guest_timezone"),
            calendar_verified=data.get("calendar_verified", True),
            cancelled_at=to_utc(pendulum.parse(cancelled_at)) if cancelled_at else None,
        )


@dataclass(frozen=True)
class Slot:
    """
    A candidate bookable interval. Not a hold: it is re-validated at booking time.
    """
    member_id: str
    interval: TimeRange
    timezone: str = UTC

    @property
    def start(self) -> DateTime:
        return self.interval.start.in_timezone(self.timezone)

    @property
    def end(self) -> DateTime:
        return self.interval.end.in_timezone(self.timezone)

    def to_dict(self) -> Dict[str, str]:
        return {
            "start": self.start.to_iso8601_string(),
            "end": self.end.to_iso8601_string(),
        }

    def format_display(self) -> str:
        """Format: Weekday, YYYY-MM-DD | HH:mm - HH:mm (N min)"""
        start, end = self.start, self.end
        return (
            f"{WEEKDAY_NAMES[start.weekday()]}, {start.format('YYYY-MM-DD')} | "
            f"{start.format('HH:mm')} - {end.format('HH:mm')} ({self.interval.duration_minutes()} min)"
        )


@dataclass
class SlotListing:
    """
    Slots offered for one member, plus whether the external busy calendar
    could be consulted.
    """
    member_id: str
    timezone: str
    slots: List[Slot] = field(default_factory=list)
    degraded: bool = False

    @property
    def verified(self) -> bool:
        """False when the slots were not checked against the external calendar."""
        return not self.degraded

    def __iter__(self) -> Iterator[Slot]:
        return iter(self.slots)

    def __len__(self) -> int:
        return len(self.slots)
