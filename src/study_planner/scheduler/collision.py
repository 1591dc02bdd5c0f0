from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .intervals import overlaps
from .models import CollisionResult, CollisionType, FixedEvent, ScheduleBlock

NO_COLLISION = CollisionResult(has_collision=False)


def check_collision(
    new_start: datetime,
    new_end: datetime,
    fixed_events: Iterable[FixedEvent],
    locked_blocks: Iterable[ScheduleBlock],
    exclude_block_id: Optional[str] = None,
) -> CollisionResult:
    """Test a candidate interval against the walls of a manual move or resize.

    Fixed events are checked before locked blocks and the first conflict is
    reported. ``exclude_block_id`` skips the block being moved.
    """

    for event in fixed_events:
        if overlaps(new_start, new_end, event.start, event.end):
            return CollisionResult(
                has_collision=True,
                type=CollisionType.FIXED_EVENT,
                message=f'Conflicts with fixed event "{event.title}"',
            )

    for block in locked_blocks:
        if block.block_id == exclude_block_id:
            continue
        if overlaps(new_start, new_end, block.start, block.end):
            return CollisionResult(
                has_collision=True,
                type=CollisionType.LOCKED_BLOCK,
                message=f'Conflicts with locked block "{block.title}"',
            )

    return NO_COLLISION
