"""REST API hosting the study planner over an in-memory store."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import AwareDatetime, BaseModel, Field, model_validator

from ..integrations.caldav_calendar import CalendarEvent, render_calendar
from ..scheduler.collision import check_collision
from ..scheduler.config import PriorityWeights, SchedulerConfig, WorkHours
from ..scheduler.engine import generate_schedule_blocks
from ..scheduler.models import (
    DEFAULT_BLOCK_COLOR,
    DEFAULT_EVENT_COLOR,
    FixedEvent,
    ScheduleBlock,
    SchedulerResult,
    SchedulerWarning,
    Task,
)
from ..settings import Settings, configure_logging, get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
_Item = TypeVar("_Item")


@dataclass
class _PlannerState:
    """Container for the planner data of one user."""

    owner_id: str
    config: SchedulerConfig
    tasks: Dict[str, Task] = field(default_factory=dict)
    fixed_events: Dict[str, FixedEvent] = field(default_factory=dict)
    blocks: Dict[str, ScheduleBlock] = field(default_factory=dict)
    warnings: List[SchedulerWarning] = field(default_factory=list)

    def locked_blocks(self) -> List[ScheduleBlock]:
        return [block for block in self.blocks.values() if block.locked]

    def upsert_task(self, task: Task) -> None:
        self.tasks[task.task_id] = task

    def delete_task(self, task_id: str) -> None:
        _require(self.tasks, task_id, "Task")
        del self.tasks[task_id]
        self.blocks = {
            block_id: block for block_id, block in self.blocks.items() if block.task_id != task_id
        }
        self.warnings = [warning for warning in self.warnings if warning.task_id != task_id]

    def upsert_fixed_event(self, event: FixedEvent) -> None:
        self.fixed_events[event.event_id] = event

    def delete_fixed_event(self, event_id: str) -> None:
        _require(self.fixed_events, event_id, "Fixed event")
        del self.fixed_events[event_id]

    def update_block(
        self,
        block_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        locked: Optional[bool] = None,
    ) -> ScheduleBlock:
        block = _require(self.blocks, block_id, "Block")

        if start is not None or end is not None:
            new_start = start or block.start
            new_end = end or block.end
            if new_end <= new_start:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Block must end after it starts.",
                )
            collision = check_collision(
                new_start,
                new_end,
                self.fixed_events.values(),
                self.locked_blocks(),
                exclude_block_id=block_id,
            )
            if collision.has_collision:
                logger.info("Rejected move of block %s: %s", block_id, collision.message)
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=collision.message)
            # A block placed by hand becomes a wall for later generations.
            block = replace(block, start=new_start, end=new_end, locked=True)

        if locked is not None:
            block = replace(block, locked=locked)

        self.blocks[block_id] = block
        return block

    def delete_block(self, block_id: str) -> None:
        _require(self.blocks, block_id, "Block")
        del self.blocks[block_id]

    def generate(self, now: datetime) -> SchedulerResult:
        """Drop future unlocked blocks and fill the freed time again."""

        preserved = {
            block_id: block
            for block_id, block in self.blocks.items()
            if block.locked or block.start < now
        }
        logger.info(
            "Regenerating schedule: removed %s future unlocked blocks",
            len(self.blocks) - len(preserved),
        )
        result = generate_schedule_blocks(
            self.tasks.values(),
            self.fixed_events.values(),
            preserved.values(),
            self.config,
            now=now,
        )
        preserved.update({block.block_id: block for block in result.created_blocks})
        self.blocks = preserved
        self.warnings = list(result.warnings)
        return result

    def clear(self) -> None:
        self.tasks.clear()
        self.fixed_events.clear()
        self.blocks.clear()
        self.warnings.clear()


def _require(items: Dict[str, _Item], item_id: str, kind: str) -> _Item:
    if item_id not in items:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind} '{item_id}' was not found.",
        )
    return items[item_id]


class TaskPayload(BaseModel):
    title: str = Field(min_length=1)
    deadline: AwareDatetime
    estimated_hours: float = Field(gt=0)
    difficulty: int = Field(default=3, ge=1, le=5)
    importance: int = Field(default=3, ge=1, le=5)

    def build_task(self, task_id: str, owner_id: str) -> Task:
        return Task(
            task_id=task_id,
            owner_id=owner_id,
            title=self.title,
            deadline=self.deadline,
            estimated_hours=self.estimated_hours,
            difficulty=self.difficulty,
            importance=self.importance,
        )


class TaskCreateRequest(TaskPayload):
    task_id: Optional[str] = Field(default=None, min_length=1)


class FixedEventPayload(BaseModel):
    title: str = Field(min_length=1)
    start: AwareDatetime
    end: AwareDatetime
    description: Optional[str] = None
    color: str = DEFAULT_EVENT_COLOR

    @model_validator(mode="after")
    def _check_bounds(self) -> "FixedEventPayload":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def build_event(self, event_id: str, owner_id: str) -> FixedEvent:
        return FixedEvent(
            event_id=event_id,
            owner_id=owner_id,
            title=self.title,
            start=self.start,
            end=self.end,
            description=self.description,
            color=self.color,
        )


class FixedEventCreateRequest(FixedEventPayload):
    event_id: Optional[str] = Field(default=None, min_length=1)


class BlockUpdateRequest(BaseModel):
    start: Optional[AwareDatetime] = None
    end: Optional[AwareDatetime] = None
    is_locked: Optional[bool] = None


class CollisionRequest(BaseModel):
    start: AwareDatetime
    end: AwareDatetime
    exclude_block_id: Optional[str] = None


class WorkHoursModel(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)


class PriorityWeightsModel(BaseModel):
    difficulty: float = 1.0
    importance: float = 1.5
    epsilon: float = 0.5


class SettingsModel(BaseModel):
    """Scheduler policy; weekday keys follow Monday=0 ... Sunday=6."""

    work_hours: Dict[int, WorkHoursModel]
    min_block_minutes: int
    max_block_minutes: int
    break_minutes: int
    max_daily_minutes_per_task: int
    min_spacing_days: int
    max_daily_study_minutes: int
    saturation_threshold: float
    preferred_durations: List[int]
    priority: PriorityWeightsModel
    min_horizon_days: int
    max_horizon_days: int
    max_rounds: int
    max_stalled_rounds: int
    timezone: str

    def build_config(self) -> SchedulerConfig:
        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone {self.timezone!r}") from exc
        return SchedulerConfig(
            work_hours={
                day: WorkHours(hours.start_hour, hours.end_hour)
                for day, hours in self.work_hours.items()
            },
            min_block_minutes=self.min_block_minutes,
            max_block_minutes=self.max_block_minutes,
            break_minutes=self.break_minutes,
            max_daily_minutes_per_task=self.max_daily_minutes_per_task,
            min_spacing_days=self.min_spacing_days,
            max_daily_study_minutes=self.max_daily_study_minutes,
            saturation_threshold=self.saturation_threshold,
            preferred_durations=tuple(self.preferred_durations),
            priority=PriorityWeights(**self.priority.model_dump()),
            min_horizon_days=self.min_horizon_days,
            max_horizon_days=self.max_horizon_days,
            max_rounds=self.max_rounds,
            max_stalled_rounds=self.max_stalled_rounds,
            timezone=tz,
        )


class TaskResponse(BaseModel):
    task_id: str
    title: str
    deadline: datetime
    estimated_hours: float
    difficulty: int
    importance: int


class FixedEventResponse(BaseModel):
    event_id: str
    title: str
    start: datetime
    end: datetime
    description: Optional[str]
    color: str


class BlockResponse(BaseModel):
    block_id: str
    task_id: str
    title: str
    start: datetime
    end: datetime
    duration_minutes: int
    is_locked: bool
    color: str = DEFAULT_BLOCK_COLOR


class WarningResponse(BaseModel):
    task_id: str
    task_title: str
    message: str
    unscheduled_hours: float


class PlannerResponse(BaseModel):
    tasks: List[TaskResponse]
    fixed_events: List[FixedEventResponse]
    blocks: List[BlockResponse]
    warnings: List[WarningResponse]


class GenerateResponse(BaseModel):
    success: bool
    created_blocks: List[BlockResponse]
    warnings: List[WarningResponse]


class CollisionResponse(BaseModel):
    has_collision: bool
    type: Optional[str] = None
    message: Optional[str] = None


def _serialize_task(task: Task) -> TaskResponse:
    return TaskResponse(
        task_id=task.task_id,
        title=task.title,
        deadline=task.deadline,
        estimated_hours=task.estimated_hours,
        difficulty=task.difficulty,
        importance=task.importance,
    )


def _serialize_event(event: FixedEvent) -> FixedEventResponse:
    return FixedEventResponse(
        event_id=event.event_id,
        title=event.title,
        start=event.start,
        end=event.end,
        description=event.description,
        color=event.color,
    )


def _serialize_block(block: ScheduleBlock) -> BlockResponse:
    return BlockResponse(
        block_id=block.block_id,
        task_id=block.task_id,
        title=block.title,
        start=block.start,
        end=block.end,
        duration_minutes=block.duration_minutes,
        is_locked=block.locked,
        color=block.color,
    )


def _serialize_warning(warning: SchedulerWarning) -> WarningResponse:
    return WarningResponse(
        task_id=warning.task_id,
        task_title=warning.task_title,
        message=warning.message,
        unscheduled_hours=warning.unscheduled_hours,
    )


def _serialize_config(config: SchedulerConfig) -> SettingsModel:
    return SettingsModel(
        work_hours={
            day: WorkHoursModel(start_hour=hours.start_hour, end_hour=hours.end_hour)
            for day, hours in sorted(config.work_hours.items())
        },
        min_block_minutes=config.min_block_minutes,
        max_block_minutes=config.max_block_minutes,
        break_minutes=config.break_minutes,
        max_daily_minutes_per_task=config.max_daily_minutes_per_task,
        min_spacing_days=config.min_spacing_days,
        max_daily_study_minutes=config.max_daily_study_minutes,
        saturation_threshold=config.saturation_threshold,
        preferred_durations=list(config.preferred_durations),
        priority=PriorityWeightsModel(
            difficulty=config.priority.difficulty,
            importance=config.priority.importance,
            epsilon=config.priority.epsilon,
        ),
        min_horizon_days=config.min_horizon_days,
        max_horizon_days=config.max_horizon_days,
        max_rounds=config.max_rounds,
        max_stalled_rounds=config.max_stalled_rounds,
        timezone=str(config.timezone),
    )


def create_app(settings: Optional[Settings] = None, *, clock: Optional[Clock] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    state = _PlannerState(
        owner_id=settings.owner_id,
        config=SchedulerConfig(timezone=settings.tzinfo),
    )
    clock = clock or (lambda: datetime.now(timezone.utc))

    app = FastAPI(title="Study Planner API")

    @app.get("/api/planner", response_model=PlannerResponse)
    def get_planner(
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PlannerResponse:
        """Planner contents; ``start``/``end`` limit events and blocks to those overlapping the range."""
        for bound in (start, end):
            if bound is not None and bound.tzinfo is None:
                raise HTTPException(status_code=400, detail="Range bounds must include a time zone")

        def in_range(item_start: datetime, item_end: datetime) -> bool:
            if start is not None and item_end <= start:
                return False
            return end is None or item_start < end

        events = [event for event in state.fixed_events.values() if in_range(event.start, event.end)]
        blocks = sorted(
            (block for block in state.blocks.values() if in_range(block.start, block.end)),
            key=lambda block: block.start,
        )
        return PlannerResponse(
            tasks=[_serialize_task(task) for task in state.tasks.values()],
            fixed_events=[_serialize_event(event) for event in events],
            blocks=[_serialize_block(block) for block in blocks],
            warnings=[_serialize_warning(warning) for warning in state.warnings],
        )

    @app.delete("/api/planner", response_model=PlannerResponse)
    def clear_planner() -> PlannerResponse:
        state.clear()
        return get_planner()

    @app.post("/api/tasks", status_code=status.HTTP_201_CREATED, response_model=PlannerResponse)
    def create_task(payload: TaskCreateRequest) -> PlannerResponse:
        task_id = payload.task_id or str(uuid.uuid4())
        if task_id in state.tasks:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Task '{task_id}' already exists.",
            )
        state.upsert_task(payload.build_task(task_id, state.owner_id))
        return get_planner()

    @app.put("/api/tasks/{task_id}", response_model=PlannerResponse)
    def update_task(task_id: str, payload: TaskPayload) -> PlannerResponse:
        _require(state.tasks, task_id, "Task")
        state.upsert_task(payload.build_task(task_id, state.owner_id))
        return get_planner()

    @app.delete("/api/tasks/{task_id}", response_model=PlannerResponse)
    def delete_task(task_id: str) -> PlannerResponse:
        state.delete_task(task_id)
        return get_planner()

    @app.post("/api/fixed-events", status_code=status.HTTP_201_CREATED, response_model=PlannerResponse)
    def create_fixed_event(payload: FixedEventCreateRequest) -> PlannerResponse:
        event_id = payload.event_id or str(uuid.uuid4())
        if event_id in state.fixed_events:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Fixed event '{event_id}' already exists.",
            )
        state.upsert_fixed_event(payload.build_event(event_id, state.owner_id))
        return get_planner()

    @app.put("/api/fixed-events/{event_id}", response_model=PlannerResponse)
    def update_fixed_event(event_id: str, payload: FixedEventPayload) -> PlannerResponse:
        _require(state.fixed_events, event_id, "Fixed event")
        state.upsert_fixed_event(payload.build_event(event_id, state.owner_id))
        return get_planner()

    @app.delete("/api/fixed-events/{event_id}", response_model=PlannerResponse)
    def delete_fixed_event(event_id: str) -> PlannerResponse:
        state.delete_fixed_event(event_id)
        return get_planner()

    @app.patch("/api/blocks/{block_id}", response_model=BlockResponse)
    def update_block(block_id: str, payload: BlockUpdateRequest) -> BlockResponse:
        block = state.update_block(
            block_id,
            start=payload.start,
            end=payload.end,
            locked=payload.is_locked,
        )
        return _serialize_block(block)

    @app.delete("/api/blocks/{block_id}", response_model=PlannerResponse)
    def delete_block(block_id: str) -> PlannerResponse:
        state.delete_block(block_id)
        return get_planner()

    @app.post("/api/collisions", response_model=CollisionResponse)
    def collision_check(payload: CollisionRequest) -> CollisionResponse:
        result = check_collision(
            payload.start,
            payload.end,
            state.fixed_events.values(),
            state.locked_blocks(),
            exclude_block_id=payload.exclude_block_id,
        )
        return CollisionResponse(
            has_collision=result.has_collision,
            type=result.type.value if result.type else None,
            message=result.message,
        )

    @app.post("/api/schedule/generate", response_model=GenerateResponse)
    def generate_schedule() -> GenerateResponse:
        result = state.generate(clock())
        return GenerateResponse(
            success=result.success,
            created_blocks=[_serialize_block(block) for block in result.created_blocks],
            warnings=[_serialize_warning(warning) for warning in result.warnings],
        )

    @app.get("/api/settings", response_model=SettingsModel)
    def get_scheduler_settings() -> SettingsModel:
        return _serialize_config(state.config)

    @app.put("/api/settings", response_model=SettingsModel)
    def update_scheduler_settings(payload: SettingsModel) -> SettingsModel:
        try:
            state.config = payload.build_config()
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return _serialize_config(state.config)

    @app.get("/api/calendar.ics")
    def export_calendar() -> Response:
        blocks = sorted(state.blocks.values(), key=lambda block: block.start)
        document = render_calendar(CalendarEvent.from_block(block) for block in blocks)
        return Response(content=document, media_type="text/calendar")

    return app


app = create_app()
