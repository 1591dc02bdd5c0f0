from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List

from .models import FixedEvent, ScheduleBlock


@dataclass(order=True)
class TimeSlot:
    """A span of time. Free slots are mutable: placement shrinks their start."""

    start: datetime
    end: datetime

    @property
    def minutes(self) -> int:
        return max(0, int((self.end - self.start).total_seconds() // 60))


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True when the two intervals intersect.

    Intervals that only touch (``a_end == b_start``) are adjacent, not
    overlapping, so back-to-back sessions are allowed.
    """

    return a_start < b_end and b_start < a_end


def sort_intervals(intervals: Iterable[TimeSlot]) -> List[TimeSlot]:
    return sorted(intervals, key=lambda slot: (slot.start, slot.end))


def blocked_intervals(
    fixed_events: Iterable[FixedEvent],
    locked_blocks: Iterable[ScheduleBlock],
) -> List[TimeSlot]:
    """Collect every wall as a slot, sorted by start time."""

    walls = [TimeSlot(event.start, event.end) for event in fixed_events]
    walls.extend(TimeSlot(block.start, block.end) for block in locked_blocks)
    return sort_intervals(walls)
