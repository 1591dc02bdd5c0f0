from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Tuple

from .config import SchedulerConfig
from .models import Task

SECONDS_PER_DAY = 24 * 60 * 60


def days_until(deadline: datetime, now: datetime) -> float:
    return (deadline - now).total_seconds() / SECONDS_PER_DAY


def slack_days(task: Task, now: datetime, config: SchedulerConfig) -> float:
    """Days left before the deadline once the work itself is accounted for."""

    effort_days = task.effort_minutes / config.max_daily_minutes_per_task
    return days_until(task.deadline, now) - effort_days


def priority_score(task: Task, now: datetime, config: SchedulerConfig) -> float:
    """Higher scores are scheduled first.

    Importance and difficulty are divided by the remaining slack (late tasks
    are clamped to zero slack) and by the effort, so that short tasks win
    ties and can be slotted into small gaps.
    """

    weights = config.priority
    weight = task.importance * weights.importance + task.difficulty * weights.difficulty
    urgency = weight / (max(slack_days(task, now, config), 0.0) + weights.epsilon)
    effort_hours = task.effort_minutes / 60
    return urgency / effort_hours


def rank_tasks(
    tasks: Iterable[Task],
    now: datetime,
    config: SchedulerConfig,
) -> List[Tuple[Task, float]]:
    """Pair each task with its score, highest first. Ties keep input order."""

    scored = [(task, priority_score(task, now, config)) for task in tasks]
    return sorted(scored, key=lambda item: -item[1])
