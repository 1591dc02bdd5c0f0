import itertools
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from study_planner.scheduler.config import SchedulerConfig, WorkHours
from study_planner.scheduler.engine import (
    _all_scheduled,
    _horizon_exhausted,
    _stalled_out,
    generate_schedule_blocks,
)
from study_planner.scheduler.intervals import overlaps
from study_planner.scheduler.inventory import SlotInventory
from study_planner.scheduler.models import FixedEvent, ScheduleBlock, Task

# Monday.
NOW = datetime(2026, 1, 19, 7, 0, tzinfo=timezone.utc)


def _dt(day_offset: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 19, hour, minute, tzinfo=timezone.utc) + timedelta(days=day_offset)


def _task(
    task_id: str = "task-1",
    *,
    deadline: datetime = NOW + timedelta(days=7),
    hours: float = 4,
    importance: int = 3,
    difficulty: int = 3,
) -> Task:
    return Task(
        task_id,
        "user-1",
        task_id.replace("-", " ").title(),
        deadline=deadline,
        estimated_hours=hours,
        importance=importance,
        difficulty=difficulty,
    )


def _event(start: datetime, end: datetime, event_id: str = "fixed-1") -> FixedEvent:
    return FixedEvent(event_id, "user-1", "Fixed Event", start=start, end=end)


def _locked(start: datetime, end: datetime, task_id: str = "other-task", block_id: str = "locked-1") -> ScheduleBlock:
    return ScheduleBlock(block_id, "user-1", task_id, "Locked", start=start, end=end, locked=True)


def _ids():
    counter = itertools.count(1)
    return lambda: f"block-{next(counter)}"


def _minutes_by_task(blocks):
    totals = defaultdict(int)
    for block in blocks:
        totals[block.task_id] += block.duration_minutes
    return totals


def test_fixed_event_covering_whole_window_is_avoided():
    config = SchedulerConfig(work_hours={day: WorkHours(10, 18) for day in range(7)})
    now = _dt(0, 17)
    tomorrow = _event(_dt(1, 10), _dt(1, 18))
    task = _task(deadline=_dt(1, 0) + timedelta(days=5), hours=2)

    result = generate_schedule_blocks([task], [tomorrow], [], config, now=now)

    assert result.success
    assert result.warnings == ()
    assert sum(block.duration_minutes for block in result.created_blocks) == 120
    for block in result.created_blocks:
        assert not overlaps(block.start, block.end, tomorrow.start, tomorrow.end)
    assert [(block.start, block.end) for block in result.created_blocks] == [
        (_dt(0, 17), _dt(0, 18)),
        (_dt(2, 10), _dt(2, 11)),
    ]


def test_locked_blocks_are_walls():
    locked = _locked(_dt(0, 8), _dt(0, 12))
    task = _task(hours=2)

    result = generate_schedule_blocks([task], [], [locked], now=NOW)

    assert result.success
    for block in result.created_blocks:
        assert not overlaps(block.start, block.end, locked.start, locked.end)
    assert result.created_blocks[0].start == _dt(0, 12)


def test_impossible_task_reports_warning():
    task = _task(deadline=NOW + timedelta(hours=2), hours=100)

    result = generate_schedule_blocks([task], [], [], now=NOW)

    assert not result.success
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning.task_id == task.task_id
    assert warning.task_title == task.title
    assert warning.unscheduled_hours == pytest.approx(99.0)
    assert "99.0h" in warning.message
    assert [(block.start, block.end) for block in result.created_blocks] == [(_dt(0, 8), _dt(0, 9))]
    assert all(block.end <= task.deadline for block in result.created_blocks)


def test_expired_task_is_silently_ignored():
    task = _task(deadline=NOW - timedelta(days=1), hours=2)

    result = generate_schedule_blocks([task], [], [], now=NOW)

    assert result.success
    assert result.created_blocks == ()
    assert result.warnings == ()


def test_task_without_effort_is_silently_ignored():
    result = generate_schedule_blocks([_task(hours=0)], [], [], now=NOW)

    assert result.success
    assert result.created_blocks == ()


def test_degenerate_input_short_circuits():
    empty = generate_schedule_blocks([], [], [], now=NOW)
    events_only = generate_schedule_blocks([], [_event(_dt(0, 9), _dt(0, 10))], [], now=NOW)

    for result in (empty, events_only):
        assert result.success
        assert result.created_blocks == ()
        assert result.warnings == ()


def test_urgent_important_task_is_placed_first():
    urgent = _task("urgent-task", deadline=NOW + timedelta(days=2), hours=2, importance=5)
    later = _task("later-task", deadline=NOW + timedelta(days=14), hours=2, importance=1)

    result = generate_schedule_blocks([later, urgent], [], [], now=NOW)

    first_urgent = next(block for block in result.created_blocks if block.task_id == "urgent-task")
    first_later = next(block for block in result.created_blocks if block.task_id == "later-task")
    assert first_urgent.start <= first_later.start
    assert first_urgent.start == _dt(0, 8)


def test_break_is_left_after_each_session():
    config = SchedulerConfig(break_minutes=15)
    tasks = [_task("a", hours=2), _task("b", hours=2)]

    result = generate_schedule_blocks(tasks, [], [], config, now=NOW)

    first, second = sorted(result.created_blocks, key=lambda block: block.start)
    assert first.start.date() == second.start.date()
    assert second.start - first.end == timedelta(minutes=15)


def test_locked_hours_count_towards_effort():
    locked = _locked(_dt(1, 14), _dt(1, 16), task_id="task-with-locked")
    task = _task("task-with-locked", hours=3)

    result = generate_schedule_blocks([task], [], [locked], now=NOW)

    assert result.success
    assert _minutes_by_task(result.created_blocks)["task-with-locked"] == 60


def test_task_covered_by_locked_blocks_needs_nothing_more():
    locked = _locked(_dt(1, 14), _dt(1, 16), task_id="done-task")

    result = generate_schedule_blocks([_task("done-task", hours=2)], [], [locked], now=NOW)

    assert result.success
    assert result.created_blocks == ()


def test_sessions_are_spread_across_days():
    task = _task(deadline=NOW + timedelta(days=10), hours=6)

    result = generate_schedule_blocks([task], [], [], now=NOW, id_factory=_ids())

    assert result.success
    assert [block.start.date() for block in result.created_blocks] == [
        _dt(0, 0).date(),
        _dt(3, 0).date(),
        _dt(6, 0).date(),
    ]
    assert [block.block_id for block in result.created_blocks] == ["block-1", "block-2", "block-3"]
    assert all(block.duration_minutes == 120 for block in result.created_blocks)
    assert all(not block.locked for block in result.created_blocks)


def test_daily_study_cap_applies_across_tasks():
    config = SchedulerConfig(max_daily_study_minutes=120)
    tasks = [_task(f"task-{index}", hours=2) for index in range(3)]

    result = generate_schedule_blocks(tasks, [], [], config, now=NOW)

    per_day = defaultdict(int)
    for block in result.created_blocks:
        per_day[block.start.date()] += block.duration_minutes
    assert result.success
    assert len(per_day) == 3
    assert all(minutes <= 120 for minutes in per_day.values())


def test_session_length_snaps_to_preferred_duration():
    now = _dt(0, 20, 50)
    task = _task(deadline=now + timedelta(days=5), hours=3)

    result = generate_schedule_blocks([task], [], [], now=now)

    first = result.created_blocks[0]
    assert (first.start, first.end) == (_dt(0, 20, 50), _dt(0, 21, 50))
    assert result.success
    assert sum(block.duration_minutes for block in result.created_blocks) == 180


def test_remainder_below_minimum_session_is_reported():
    task = _task(hours=130 / 60)

    result = generate_schedule_blocks([task], [], [], now=NOW)

    assert not result.success
    assert [block.duration_minutes for block in result.created_blocks] == [120]
    assert result.warnings[0].unscheduled_hours == pytest.approx(10 / 60)


def test_finishing_session_is_snapped_down_too():
    task = _task(hours=100 / 60)

    result = generate_schedule_blocks([task], [], [], now=NOW)

    assert [block.duration_minutes for block in result.created_blocks] == [90]
    assert result.warnings[0].unscheduled_hours == pytest.approx(10 / 60)


def test_sessions_never_go_back_before_the_previous_one():
    config = SchedulerConfig(work_hours={day: WorkHours(10, 11) for day in range(7)})
    task = _task(deadline=NOW + timedelta(days=9), hours=4)

    result = generate_schedule_blocks([task], [], [], config, now=NOW)

    offsets = [(block.start.date() - NOW.date()).days for block in result.created_blocks]
    assert offsets == sorted(offsets)
    assert offsets == [0, 4, 8]
    assert not result.success
    assert result.warnings[0].unscheduled_hours == pytest.approx(1.0)


def _two_hour_days(**overrides) -> SchedulerConfig:
    return SchedulerConfig(
        work_hours={day: WorkHours(8, 10) for day in range(7)},
        saturation_threshold=0.5,
        break_minutes=0,
        **overrides,
    )


def test_saturated_day_is_passed_over_for_a_quieter_one():
    urgent = _task("urgent", deadline=_dt(0, 10), hours=1, importance=5, difficulty=5)
    relaxed = _task("relaxed", deadline=NOW + timedelta(days=5), hours=1)

    result = generate_schedule_blocks([relaxed, urgent], [], [], _two_hour_days(), now=NOW)

    placed = {block.task_id: (block.start, block.end) for block in result.created_blocks}
    assert result.success
    assert placed["urgent"] == (_dt(0, 8), _dt(0, 9))
    assert placed["relaxed"] == (_dt(1, 8), _dt(1, 9))


def test_saturated_day_is_used_when_nothing_else_fits():
    urgent = _task("urgent", deadline=_dt(0, 10), hours=1, importance=5, difficulty=5)
    also_due = _task("also-due", deadline=_dt(0, 10), hours=1)

    result = generate_schedule_blocks([also_due, urgent], [], [], _two_hour_days(), now=NOW)

    placed = {block.task_id: (block.start, block.end) for block in result.created_blocks}
    assert result.success
    assert placed["urgent"] == (_dt(0, 8), _dt(0, 9))
    assert placed["also-due"] == (_dt(0, 9), _dt(0, 10))


def test_round_cap_returns_partial_schedule(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.WARNING, logger="study_planner.scheduler.engine")
    config = SchedulerConfig(max_rounds=1)

    result = generate_schedule_blocks([_task(hours=4)], [], [], config, now=NOW)

    assert [block.duration_minutes for block in result.created_blocks] == [120]
    assert result.warnings[0].unscheduled_hours == pytest.approx(2.0)
    assert any("round cap of 1 rounds" in record.message for record in caplog.records)


def test_stalled_rounds_stop_the_run(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.DEBUG, logger="study_planner.scheduler.engine")
    config = SchedulerConfig(max_stalled_rounds=2)

    result = generate_schedule_blocks([_task(hours=130 / 60)], [], [], config, now=NOW)

    assert len(result.created_blocks) == 1
    assert len(result.warnings) == 1
    assert any("after 3 rounds without placement" in record.message for record in caplog.records)


def test_exhausted_horizon_stops_the_run(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.DEBUG, logger="study_planner.scheduler.engine")
    config = SchedulerConfig(min_horizon_days=1, max_horizon_days=2)

    result = generate_schedule_blocks([_task(hours=130 / 60)], [], [], config, now=NOW)

    assert len(result.created_blocks) == 1
    assert len(result.warnings) == 1
    assert any("end of the 2-day horizon" in record.message for record in caplog.records)


def test_termination_predicates():
    config = SchedulerConfig(max_stalled_rounds=10)

    assert not _stalled_out(10, config)
    assert _stalled_out(11, config)
    assert _horizon_exhausted(0, SlotInventory([]))
    assert _all_scheduled([])


def test_sessions_never_run_past_the_deadline():
    task = _task(deadline=_dt(0, 9, 30), hours=3)

    result = generate_schedule_blocks([task], [], [], now=NOW)

    assert all(block.end <= task.deadline for block in result.created_blocks)
    assert [(block.start, block.end) for block in result.created_blocks] == [(_dt(0, 8), _dt(0, 9, 30))]
    assert result.warnings[0].unscheduled_hours == pytest.approx(1.5)


def test_unscheduled_work_is_logged(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.WARNING, logger="study_planner.scheduler.engine")
    task = _task(deadline=NOW + timedelta(hours=2), hours=100)

    generate_schedule_blocks([task], [], [], now=NOW)

    assert any("unscheduled" in record.message for record in caplog.records)


def test_generated_schedule_respects_all_constraints():
    plus_one = timezone(timedelta(hours=1))
    config = SchedulerConfig(timezone=plus_one)
    now = datetime(2026, 1, 19, 9, 20, tzinfo=plus_one)
    tasks = [
        _task("exam", deadline=now + timedelta(days=3), hours=9, importance=5, difficulty=4),
        _task("essay", deadline=now + timedelta(days=8), hours=6, importance=4),
        _task("reading", deadline=now + timedelta(days=20), hours=12, importance=2, difficulty=2),
        _task("quiz", deadline=now + timedelta(days=1, hours=3), hours=1.5),
        _task("project", deadline=now + timedelta(days=14), hours=20, importance=3, difficulty=5),
    ]
    fixed_events = [
        _event(
            datetime(2026, 1, 19, 12, tzinfo=plus_one) + timedelta(days=offset),
            datetime(2026, 1, 19, 14, tzinfo=plus_one) + timedelta(days=offset),
            event_id=f"lecture-{offset}",
        )
        for offset in range(21)
    ]
    locked_blocks = [
        _locked(
            datetime(2026, 1, 20, 16, tzinfo=plus_one),
            datetime(2026, 1, 20, 18, tzinfo=plus_one),
            task_id="essay",
        )
    ]

    result = generate_schedule_blocks(tasks, fixed_events, locked_blocks, config, now=now)
    blocks = result.created_blocks

    walls = [(event.start, event.end) for event in fixed_events]
    walls += [(block.start, block.end) for block in locked_blocks]
    for block in blocks:
        assert block.start >= now
        assert all(not overlaps(block.start, block.end, start, end) for start, end in walls)

    for first, second in itertools.combinations(blocks, 2):
        assert not overlaps(first.start, first.end, second.start, second.end)

    deadlines = {task.task_id: task.deadline for task in tasks}
    for block in blocks:
        assert block.end <= deadlines[block.task_id]

    for block in blocks:
        local_start = block.start.astimezone(plus_one)
        local_end = block.end.astimezone(plus_one)
        hours = config.work_hours[local_start.weekday()]
        window_start = local_start.replace(hour=hours.start_hour, minute=0, second=0)
        window_end = window_start + timedelta(hours=hours.end_hour - hours.start_hour)
        assert window_start <= local_start
        assert local_end <= window_end

    scheduled = _minutes_by_task(blocks)
    for block in locked_blocks:
        scheduled[block.task_id] += block.duration_minutes
    warned = {warning.task_id for warning in result.warnings}
    for task in tasks:
        assert scheduled[task.task_id] <= task.effort_minutes
        assert (task.task_id in warned) == (scheduled[task.task_id] < task.effort_minutes)
    assert result.success == (not result.warnings)
