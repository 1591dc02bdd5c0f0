from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

DEFAULT_BLOCK_COLOR = "#3b82f6"
DEFAULT_EVENT_COLOR = "#6b7280"


@dataclass(frozen=True)
class Task:
    """A unit of study work that has to be finished before its deadline."""

    task_id: str
    owner_id: str
    title: str
    deadline: datetime
    estimated_hours: float
    difficulty: int = field(default=3, kw_only=True)
    importance: int = field(default=3, kw_only=True)

    def __post_init__(self) -> None:  # pragma: no cover - validation logic
        if not 1 <= self.difficulty <= 5:
            raise ValueError("Difficulty must be between 1 and 5")
        if not 1 <= self.importance <= 5:
            raise ValueError("Importance must be between 1 and 5")

    @property
    def effort_minutes(self) -> int:
        return int(round(self.estimated_hours * 60))

    def is_schedulable(self, now: datetime) -> bool:
        return self.effort_minutes > 0 and self.deadline > now


@dataclass(frozen=True)
class FixedEvent:
    """Immovable commitment that blocks generation and manual placement."""

    event_id: str
    owner_id: str
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    color: str = DEFAULT_EVENT_COLOR

    def __post_init__(self) -> None:  # pragma: no cover - validation logic
        if self.end <= self.start:
            raise ValueError("Fixed event must end after it starts")


@dataclass(frozen=True)
class ScheduleBlock:
    """A work session for one task, generated or placed by hand."""

    block_id: str
    owner_id: str
    task_id: str
    title: str
    start: datetime
    end: datetime
    locked: bool = False
    color: str = DEFAULT_BLOCK_COLOR

    def __post_init__(self) -> None:  # pragma: no cover - validation logic
        if self.end <= self.start:
            raise ValueError("Schedule block must have positive duration")

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class SchedulerWarning:
    task_id: str
    task_title: str
    message: str
    unscheduled_hours: float


@dataclass(frozen=True)
class SchedulerResult:
    """Output of one generation run.

    ``created_blocks`` holds everything that was placed, even when some tasks
    could not be fully scheduled.
    """

    created_blocks: Tuple[ScheduleBlock, ...] = ()
    warnings: Tuple[SchedulerWarning, ...] = ()

    @property
    def success(self) -> bool:
        return not self.warnings


class CollisionType(str, Enum):
    FIXED_EVENT = "fixed_event"
    LOCKED_BLOCK = "locked_block"


@dataclass(frozen=True)
class CollisionResult:
    has_collision: bool
    type: Optional[CollisionType] = None
    message: Optional[str] = None
