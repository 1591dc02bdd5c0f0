from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from .config import SchedulerConfig
from .intervals import TimeSlot
from .models import Task
from .work_calendar import free_slots, work_window


@dataclass
class DayCapacity:
    """Free time of one calendar day and how much of it study already uses."""

    index: int
    day: date
    has_work_window: bool
    slots: List[TimeSlot] = field(default_factory=list)
    total_minutes: int = 0
    used_minutes: int = 0

    @property
    def available_minutes(self) -> int:
        return max(0, self.total_minutes - self.used_minutes)

    @property
    def saturation(self) -> float:
        if self.total_minutes <= 0:
            return 1.0
        return self.used_minutes / self.total_minutes


@dataclass
class SlotInventory:
    days: List[DayCapacity]

    def __len__(self) -> int:
        return len(self.days)

    def index_of(self, moment: datetime, config: SchedulerConfig) -> Optional[int]:
        """Day offset of ``moment`` from the first day, None when it falls before it."""
        if not self.days:
            return None
        offset = (moment.astimezone(config.timezone).date() - self.days[0].day).days
        if offset < 0:
            return None
        return offset


def horizon_days(tasks: Sequence[Task], now: datetime, config: SchedulerConfig) -> int:
    """Days to look ahead: the furthest deadline plus one, within config bounds."""

    today = now.astimezone(config.timezone).date()
    furthest = 0
    for task in tasks:
        deadline_day = task.deadline.astimezone(config.timezone).date()
        furthest = max(furthest, (deadline_day - today).days)
    return min(config.max_horizon_days, max(config.min_horizon_days, furthest + 2))


def build_inventory(
    blocked: Sequence[TimeSlot],
    config: SchedulerConfig,
    now: datetime,
    days: int,
) -> SlotInventory:
    local_now = now.astimezone(config.timezone)
    earliest = _round_up_to_minute(local_now)
    today = local_now.date()

    capacities: List[DayCapacity] = []
    for index in range(days):
        day = today + timedelta(days=index)
        slots = list(_not_before(free_slots(day, blocked, config), earliest, config))
        capacities.append(
            DayCapacity(
                index=index,
                day=day,
                has_work_window=work_window(day, config) is not None,
                slots=slots,
                total_minutes=sum(slot.minutes for slot in slots),
            )
        )
    return SlotInventory(capacities)


def _not_before(
    slots: Iterable[TimeSlot],
    earliest: datetime,
    config: SchedulerConfig,
) -> Iterable[TimeSlot]:
    for slot in slots:
        if slot.end <= earliest:
            continue
        if slot.start < earliest:
            slot = TimeSlot(earliest, slot.end)
        if slot.minutes >= config.min_block_minutes:
            yield slot


def _round_up_to_minute(moment: datetime) -> datetime:
    truncated = moment.replace(second=0, microsecond=0)
    if truncated == moment:
        return moment
    return truncated + timedelta(minutes=1)
