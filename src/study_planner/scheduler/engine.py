from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from .intervals import TimeSlot, blocked_intervals
from .inventory import DayCapacity, SlotInventory, build_inventory, horizon_days
from .models import (
    FixedEvent,
    ScheduleBlock,
    SchedulerResult,
    SchedulerWarning,
    Task,
)
from .priority import days_until, rank_tasks

logger = logging.getLogger(__name__)

BlockIdFactory = Callable[[], str]


@dataclass
class TaskProgress:
    """Placement state of one task during a generation run."""

    task: Task
    priority: float
    remaining_minutes: int
    target_sessions: int
    target_spacing_days: int
    deadline_index: int
    last_session_index: Optional[int] = None
    sessions: int = 0
    daily_minutes: Dict[int, int] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.remaining_minutes <= 0

    def used_on(self, day_index: int) -> int:
        return self.daily_minutes.get(day_index, 0)

    def record(self, day_index: int, minutes: int) -> None:
        self.remaining_minutes -= minutes
        self.sessions += 1
        self.last_session_index = day_index
        self.daily_minutes[day_index] = self.used_on(day_index) + minutes


def generate_schedule_blocks(
    tasks: Iterable[Task],
    fixed_events: Iterable[FixedEvent],
    locked_blocks: Iterable[ScheduleBlock],
    config: Optional[SchedulerConfig] = None,
    *,
    now: Optional[datetime] = None,
    id_factory: Optional[BlockIdFactory] = None,
) -> SchedulerResult:
    """Place study sessions for ``tasks`` into the free time between walls.

    Fixed events and locked blocks are never intersected. Minutes already
    covered by a task's locked blocks count towards its effort. Tasks with no
    effort or an expired deadline are ignored; tasks that cannot be fully
    placed before their deadline produce a warning.
    """

    config = config or DEFAULT_SCHEDULER_CONFIG
    now = now or datetime.now(config.timezone)
    fixed_events = list(fixed_events)
    locked_blocks = list(locked_blocks)

    eligible = [task for task in tasks if task.is_schedulable(now)]
    if not eligible:
        logger.debug("No schedulable tasks, nothing to generate")
        return SchedulerResult()

    inventory = build_inventory(
        blocked_intervals(fixed_events, locked_blocks),
        config,
        now,
        horizon_days(eligible, now, config),
    )
    locked_minutes = _locked_minutes_by_task(locked_blocks)
    progress = [
        _start_progress(task, score, locked_minutes.get(task.task_id, 0), now, inventory, config)
        for task, score in rank_tasks(eligible, now, config)
    ]
    pending = [item for item in progress if not item.done]

    created = _run_rounds(pending, inventory, config, id_factory or _new_block_id)

    warnings = tuple(_warning_for(item, config) for item in pending if not item.done)
    for warning in warnings:
        logger.warning("Task %s left %.1fh unscheduled", warning.task_id, warning.unscheduled_hours)
    logger.info(
        "Generated %s blocks for %s tasks over %s days (%s warnings)",
        len(created),
        len(pending),
        len(inventory),
        len(warnings),
    )
    return SchedulerResult(created_blocks=tuple(created), warnings=warnings)


def _run_rounds(
    pending: Sequence[TaskProgress],
    inventory: SlotInventory,
    config: SchedulerConfig,
    id_factory: BlockIdFactory,
) -> List[ScheduleBlock]:
    """Round-robin over tasks in priority order, one session per task per round."""

    blocks: List[ScheduleBlock] = []
    cursor = 0
    stalled = 0
    for round_number in range(1, config.max_rounds + 1):
        if _all_scheduled(pending):
            break

        placed = 0
        for item in pending:
            if item.done:
                continue
            block = _place_session(item, inventory, cursor, config, id_factory)
            if block is not None:
                blocks.append(block)
                placed += 1
        if placed:
            logger.debug("Round %s placed %s sessions", round_number, placed)
            continue

        cursor += 1
        stalled += 1
        if _stalled_out(stalled, config):
            logger.debug("Stopping after %s rounds without placement", stalled)
            break
        if _horizon_exhausted(cursor, inventory):
            logger.debug("Stopping: cursor reached the end of the %s-day horizon", len(inventory))
            break
    else:
        if not _all_scheduled(pending):
            logger.warning("Stopping at the round cap of %s rounds", config.max_rounds)
    return blocks


def _all_scheduled(pending: Sequence[TaskProgress]) -> bool:
    return all(item.done for item in pending)


def _stalled_out(stalled: int, config: SchedulerConfig) -> bool:
    return stalled > config.max_stalled_rounds


def _horizon_exhausted(cursor: int, inventory: SlotInventory) -> bool:
    return cursor >= len(inventory)


def _place_session(
    item: TaskProgress,
    inventory: SlotInventory,
    cursor: int,
    config: SchedulerConfig,
    id_factory: BlockIdFactory,
) -> Optional[ScheduleBlock]:
    day = _find_day(item, inventory, cursor, config, prefer_unsaturated=True)
    if day is None:
        day = _find_day(item, inventory, cursor, config, prefer_unsaturated=False)
    if day is None:
        return None

    length = _session_length(item, day, config)
    if length < config.min_block_minutes:
        return None

    slot = _slot_for(day, length, item.task.deadline)
    if slot is None:  # pragma: no cover - length never exceeds the largest usable slot
        return None

    start = slot.start
    end = start + timedelta(minutes=length)
    slot.start = end + timedelta(minutes=config.break_minutes)
    if slot.minutes <= 0:
        day.slots.remove(slot)

    item.record(day.index, length)
    day.used_minutes += length

    task = item.task
    logger.debug(
        "Placed %s min of task %s on %s at %s (session %s)",
        length,
        task.task_id,
        day.day.isoformat(),
        start.isoformat(),
        item.sessions,
    )
    return ScheduleBlock(
        block_id=id_factory(),
        owner_id=task.owner_id,
        task_id=task.task_id,
        title=task.title,
        start=start,
        end=end,
    )


def _find_day(
    item: TaskProgress,
    inventory: SlotInventory,
    cursor: int,
    config: SchedulerConfig,
    *,
    prefer_unsaturated: bool,
) -> Optional[DayCapacity]:
    last = min(item.deadline_index, len(inventory) - 1)
    for day in inventory.days[cursor : last + 1]:
        if not _is_suitable(item, day, config):
            continue
        if prefer_unsaturated and not _is_preferred(item, day, config):
            continue
        return day
    return None


def _is_suitable(item: TaskProgress, day: DayCapacity, config: SchedulerConfig) -> bool:
    """Hard constraints: a minimum session must fit on ``day``."""

    if not day.has_work_window:
        return False
    if item.last_session_index is not None:
        if day.index - item.last_session_index < config.min_spacing_days:
            return False
    minimum = config.min_block_minutes
    if config.max_daily_study_minutes - day.used_minutes < minimum:
        return False
    if config.max_daily_minutes_per_task - item.used_on(day.index) < minimum:
        return False
    return _largest_usable(day, item.task.deadline) >= minimum


def _is_preferred(item: TaskProgress, day: DayCapacity, config: SchedulerConfig) -> bool:
    if day.saturation >= config.saturation_threshold:
        return False
    if item.last_session_index is None:
        return True
    return day.index - item.last_session_index >= item.target_spacing_days


def _session_length(item: TaskProgress, day: DayCapacity, config: SchedulerConfig) -> int:
    ceiling = min(
        item.remaining_minutes,
        config.max_daily_minutes_per_task - item.used_on(day.index),
        _largest_usable(day, item.task.deadline),
        config.max_daily_study_minutes - day.used_minutes,
        config.max_block_minutes,
    )
    if ceiling < config.min_block_minutes:
        return 0

    snapped = [
        duration
        for duration in config.preferred_durations
        if config.min_block_minutes <= duration <= ceiling
    ]
    return snapped[-1] if snapped else ceiling


def _usable_minutes(slot: TimeSlot, deadline: datetime) -> int:
    return TimeSlot(slot.start, min(slot.end, deadline)).minutes


def _largest_usable(day: DayCapacity, deadline: datetime) -> int:
    return max((_usable_minutes(slot, deadline) for slot in day.slots), default=0)


def _slot_for(day: DayCapacity, length: int, deadline: datetime) -> Optional[TimeSlot]:
    for slot in day.slots:
        if _usable_minutes(slot, deadline) >= length:
            return slot
    return None


def _start_progress(
    task: Task,
    score: float,
    locked_minutes: int,
    now: datetime,
    inventory: SlotInventory,
    config: SchedulerConfig,
) -> TaskProgress:
    remaining = max(0, task.effort_minutes - locked_minutes)
    target_sessions = max(1, math.ceil(remaining / config.max_block_minutes))
    if target_sessions == 1:
        spacing = 0
    else:
        spacing = max(1, math.floor(days_until(task.deadline, now) / target_sessions))
    deadline_index = inventory.index_of(task.deadline, config)
    return TaskProgress(
        task=task,
        priority=score,
        remaining_minutes=remaining,
        target_sessions=target_sessions,
        target_spacing_days=spacing,
        deadline_index=deadline_index if deadline_index is not None else -1,
    )


def _locked_minutes_by_task(blocks: Iterable[ScheduleBlock]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for block in blocks:
        totals[block.task_id] = totals.get(block.task_id, 0) + block.duration_minutes
    return totals


def _warning_for(item: TaskProgress, config: SchedulerConfig) -> SchedulerWarning:
    task = item.task
    hours = item.remaining_minutes / 60
    deadline = task.deadline.astimezone(config.timezone)
    return SchedulerWarning(
        task_id=task.task_id,
        task_title=task.title,
        message=f"Could not schedule {hours:.1f}h of '{task.title}' before {deadline:%d/%m/%Y %H:%M}",
        unscheduled_hours=hours,
    )


def _new_block_id() -> str:
    return str(uuid.uuid4())
