from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence

from .config import SchedulerConfig
from .intervals import TimeSlot, overlaps


def work_window(day: date, config: SchedulerConfig) -> Optional[TimeSlot]:
    """Return the working window of ``day`` or None when it is a day off.

    Hours are wall-clock hours of that calendar day in ``config.timezone``.
    """

    hours = config.hours_for(day.weekday())
    if hours is None:
        return None
    midnight = datetime.combine(day, time(0), tzinfo=config.timezone)
    return TimeSlot(
        start=midnight + timedelta(hours=hours.start_hour),
        end=midnight + timedelta(hours=hours.end_hour),
    )


def free_slots(
    day: date,
    blocked: Sequence[TimeSlot],
    config: SchedulerConfig,
) -> List[TimeSlot]:
    """Subtract ``blocked`` (sorted by start) from the day's work window."""

    window = work_window(day, config)
    if window is None:
        return []

    cursor = window.start
    slots: List[TimeSlot] = []
    for wall in blocked:
        if not overlaps(window.start, window.end, wall.start, wall.end):
            continue
        if wall.start > cursor:
            slot_end = min(wall.start, window.end)
            if slot_end > cursor:
                slots.append(TimeSlot(cursor, slot_end))
        cursor = max(cursor, wall.end)
    if cursor < window.end:
        slots.append(TimeSlot(cursor, window.end))

    return [slot for slot in slots if slot.minutes >= config.min_block_minutes]
