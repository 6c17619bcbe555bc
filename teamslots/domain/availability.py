"""
Evaluation of recurring weekly rules plus one-off overrides.

Everything here is a pure function over explicit inputs (rules,
overrides, range) so it can be exercised without any storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, List

from .models import AvailabilityOverride, AvailabilityRule, OverrideKind, TimeRange, to_utc
from .slot_calculator import clip_ranges, merge_ranges, subtract_ranges


def _local_days(range_start: datetime, range_end: datetime, timezone: str) -> Iterator[date]:
    """Every local calendar date in ``timezone`` touched by [range_start, range_end)."""
    first = range_start.in_timezone(timezone).date()
    last = range_end.in_timezone(timezone).date()
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


def candidate_intervals(
    rules: Iterable[AvailabilityRule],
    overrides: Iterable[AvailabilityOverride],
    range_start: datetime,
    range_end: datetime,
) -> List[TimeRange]:
    """
    Resolve rules and overrides into sorted, non-overlapping UTC intervals
    inside [range_start, range_end).

    Each rule is materialised on every matching local date in its own
    timezone, so a 09:00-17:00 rule follows that zone's DST offsets.
    "add" overrides are unioned in, then "remove" overrides are subtracted.
    """
    bounds = TimeRange(start=range_start, end=range_end)
    overrides = list(overrides)

    intervals: List[TimeRange] = []
    for rule in rules:
        for day in _local_days(bounds.start, bounds.end, rule.timezone):
            if not rule.applies_on(day):
                continue
            interval = rule.interval_on(day)
            if interval is not None:
                intervals.append(interval)

    intervals.extend(o.interval for o in overrides if o.kind is OverrideKind.ADD)
    removals = [o.interval for o in overrides if o.kind is OverrideKind.REMOVE]

    resolved = subtract_ranges(merge_ranges(intervals), removals)
    return clip_ranges(resolved, bounds.start, bounds.end)


@dataclass
class AvailabilityRuleSet:
    """
    The published availability of one member: recurring rules plus overrides.
    """
    member_id: str
    rules: List[AvailabilityRule] = field(default_factory=list)
    overrides: List[AvailabilityOverride] = field(default_factory=list)

    def candidate_intervals(self, range_start: datetime, range_end: datetime) -> List[TimeRange]:
        return candidate_intervals(
            self.rules,
            self.overrides,
            to_utc(range_start),
            to_utc(range_end),
        )

