"""Study session scheduling engine."""

from .collision import check_collision
from .config import DEFAULT_SCHEDULER_CONFIG, PriorityWeights, SchedulerConfig, WorkHours
from .engine import generate_schedule_blocks
from .intervals import TimeSlot, overlaps
from .models import (
    CollisionResult,
    CollisionType,
    FixedEvent,
    ScheduleBlock,
    SchedulerResult,
    SchedulerWarning,
    Task,
)

__all__ = [
    "DEFAULT_SCHEDULER_CONFIG",
    "CollisionResult",
    "CollisionType",
    "FixedEvent",
    "PriorityWeights",
    "ScheduleBlock",
    "SchedulerConfig",
    "SchedulerResult",
    "SchedulerWarning",
    "Task",
    "TimeSlot",
    "WorkHours",
    "check_collision",
    "generate_schedule_blocks",
    "overlaps",
]
