"""
Core interval arithmetic for turning availability into bookable slots.

Pure domain logic without any external dependencies (no API calls,
no storage, no I/O).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List, Optional

from pendulum import DateTime

from .models import Slot, TimeRange, UTC


def merge_ranges(ranges: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Merge overlapping or adjacent time ranges.

    Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
    """
    sorted_ranges = sorted(ranges, key=lambda r: (r.start, r.end))
    if not sorted_ranges:
        return []

    merged: List[TimeRange] = [sorted_ranges[0]]

    for current in sorted_ranges[1:]:
        last = merged[-1]

        # Adjacent counts as touching: half-open ranges leave no gap
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = TimeRange(start=last.start, end=current.end)
        else:
            merged.append(current)

    return merged


def subtract_ranges(
    blocks: Iterable[TimeRange],
    busy_ranges: Iterable[TimeRange],
) -> List[TimeRange]:
    """
    Subtract busy ranges from blocks, yielding the remaining free ranges.

    Example:
    Block: 09:00 - 17:00
    Busy: [10:00-11:00, 14:00-15:00]
    Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
    """
    sorted_busy = merge_ranges(busy_ranges)
    free_ranges: List[TimeRange] = []

    for block in merge_ranges(blocks):
        current_start = block.start

        for busy in sorted_busy:
            if busy.end <= current_start:
                continue
            if busy.start >= block.end:
                break

            if current_start < busy.start:
                free_ranges.append(TimeRange(start=current_start, end=busy.start))

            current_start = max(current_start, busy.end)
            if current_start >= block.end:
                break

        if current_start < block.end:
            free_ranges.append(TimeRange(start=current_start, end=block.end))

    return free_ranges


def clip_ranges(
    ranges: Iterable[TimeRange],
    min_bound: DateTime,
    max_bound: DateTime,
) -> List[TimeRange]:
    """
    Clip ranges to [min_bound, max_bound), dropping those completely outside.
    """
    bounds = TimeRange(start=min_bound, end=max_bound)
    clipped: List[TimeRange] = []
    for time_range in ranges:
        intersection = time_range.intersect(bounds)
        if intersection is not None:
            clipped.append(intersection)
    return clipped


class SlotCalculator:
    """
    Quantises free time into fixed-width slots.

    Algorithm:
    1. Subtract busy ranges (external calendar, reservations) from availability
    2. Step through each free range by ``slot_duration`` from its start
    3. Drop the trailing remainder shorter than ``slot_duration``
    4. Keep slots wholly inside the requested window and not in the past
    """

    def free_intervals(
        self,
        availability: Iterable[TimeRange],
        *busy_sources: Iterable[TimeRange],
    ) -> List[TimeRange]:
        """Availability minus every busy source, merged and sorted."""
        busy: List[TimeRange] = []
        for source in busy_sources:
            busy.extend(source)
        return subtract_ranges(availability, busy)

    def quantize(
        self,
        free_ranges: Iterable[TimeRange],
        slot_duration: timedelta,
        *,
        member_id: str,
        window: Optional[TimeRange] = None,
        not_before: Optional[DateTime] = None,
        timezone: str = UTC,
    ) -> List[Slot]:
        """
        Emit non-overlapping slots of ``slot_duration`` for each free range.

        The grid starts at each free range's own start, so it does not
        depend on ``window``; the window only filters the result.
        """
        if slot_duration <= timedelta(0):
            raise ValueError("slot_duration must be positive")

        slots: List[Slot] = []

        for free in merge_ranges(free_ranges):
            slot_start = free.start

            while slot_start + slot_duration <= free.end:
                slot_end = slot_start + slot_duration
                candidate = TimeRange(start=slot_start, end=slot_end)
                slot_start = slot_end

                if window is not None and not window.contains(candidate):
                    continue
                if not_before is not None and candidate.start < not_before:
                    continue

                slots.append(Slot(member_id=member_id, interval=candidate, timezone=timezone))

        return slots
