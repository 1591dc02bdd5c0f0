from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclass(frozen=True)
class WorkHours:
    """Wall-clock working window of one weekday, in whole hours."""

    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError(
                f"Invalid work hours {self.start_hour}-{self.end_hour}: "
                "expected 0 <= start < end <= 24"
            )


@dataclass(frozen=True)
class PriorityWeights:
    """Tuning constants of the priority score.

    ``importance`` should stay above ``difficulty``; ``epsilon`` keeps the
    score finite when a task has no slack left.
    """

    difficulty: float = 1.0
    importance: float = 1.5
    epsilon: float = 0.5

    def __post_init__(self) -> None:
        if self.difficulty <= 0 or self.importance <= 0:
            raise ValueError("Priority weights must be positive")
        if self.epsilon <= 0:
            raise ValueError("Priority epsilon must be positive")


def _default_work_hours() -> Mapping[int, WorkHours]:
    # Keys follow date.weekday(): Monday is 0, Sunday is 6.
    weekdays = {day: WorkHours(8, 22) for day in range(5)}
    weekend = {5: WorkHours(10, 18), 6: WorkHours(10, 18)}
    return {**weekdays, **weekend}


@dataclass(frozen=True)
class SchedulerConfig:
    """Policy for a generation run. Validated on construction."""

    work_hours: Mapping[int, WorkHours] = field(default_factory=_default_work_hours)
    min_block_minutes: int = 30
    max_block_minutes: int = 120
    break_minutes: int = 15
    max_daily_minutes_per_task: int = 120
    min_spacing_days: int = 1
    max_daily_study_minutes: int = 360
    saturation_threshold: float = 0.7
    preferred_durations: Tuple[int, ...] = (30, 45, 60, 90, 120)
    priority: PriorityWeights = field(default_factory=PriorityWeights)
    min_horizon_days: int = 30
    max_horizon_days: int = 120
    max_rounds: int = 200
    max_stalled_rounds: int = 10
    timezone: tzinfo = timezone.utc

    def __post_init__(self) -> None:
        for weekday, hours in self.work_hours.items():
            if weekday not in range(7):
                raise ValueError(f"Unknown weekday {weekday!r}: expected 0 (Monday) to 6 (Sunday)")
            if not isinstance(hours, WorkHours):
                raise ValueError(f"Work hours for weekday {weekday} must be a WorkHours value")
        object.__setattr__(self, "work_hours", MappingProxyType(dict(self.work_hours)))
        object.__setattr__(self, "preferred_durations", tuple(sorted(set(self.preferred_durations))))

        if self.min_block_minutes <= 0:
            raise ValueError("min_block_minutes must be positive")
        if self.max_block_minutes < self.min_block_minutes:
            raise ValueError("max_block_minutes must not be smaller than min_block_minutes")
        if self.break_minutes < 0:
            raise ValueError("break_minutes must not be negative")
        if self.max_daily_minutes_per_task < self.min_block_minutes:
            raise ValueError("max_daily_minutes_per_task must allow at least one minimum session")
        if self.max_daily_study_minutes < self.min_block_minutes:
            raise ValueError("max_daily_study_minutes must allow at least one minimum session")
        if self.min_spacing_days < 0:
            raise ValueError("min_spacing_days must not be negative")
        if not 0 < self.saturation_threshold <= 1:
            raise ValueError("saturation_threshold must be in (0, 1]")
        if any(duration <= 0 for duration in self.preferred_durations):
            raise ValueError("preferred_durations must be positive")
        if not 0 < self.min_horizon_days <= self.max_horizon_days:
            raise ValueError("Horizon bounds must satisfy 0 < min_horizon_days <= max_horizon_days")
        if self.max_rounds <= 0 or self.max_stalled_rounds < 0:
            raise ValueError("Round limits must be positive")

    def hours_for(self, weekday: int) -> WorkHours | None:
        return self.work_hours.get(weekday)


DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()
