"""Read model the views render: stage statuses, completion and the boat position."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel

from .progress import completion
from .schemas import Note, ProgressState, Reminder, Stage

# Zigzag island layout: columns alternate, rows step down the map.
LAYOUT_ORIGIN_X = 50.0
LAYOUT_ORIGIN_Y = 100.0
LAYOUT_STEP_X = 150.0
LAYOUT_STEP_Y = 120.0


class StageStatus(str, Enum):
    LOCKED = "locked"
    CURRENT = "current"
    COMPLETED = "completed"


class Position(BaseModel):
    x: float
    y: float


class StageView(BaseModel):
    stage: Stage
    status: StageStatus
    position: Position


class JourneySnapshot(BaseModel):
    """Everything a timeline or dashboard view needs, recomputed after each mutation."""

    idea_id: str
    revision: int
    stages: List[StageView]
    current_index: int
    completed_count: int
    completion: float
    completion_percent: int
    is_finished: bool
    boat_position: Position
    notes: Dict[str, List[Note]]
    reminders: Dict[str, List[Reminder]]


def island_position(index: int) -> Position:
    """Layout coordinate of the island at *index*; a pure function of the index."""

    return Position(
        x=LAYOUT_ORIGIN_X + (index % 2) * LAYOUT_STEP_X,
        y=LAYOUT_ORIGIN_Y + index * LAYOUT_STEP_Y,
    )


def boat_position(state: ProgressState) -> Position:
    """The boat sits on the current island, or on the last one once finished."""

    if not state.stages:
        return Position(x=0.0, y=0.0)
    return island_position(min(state.current_index, len(state.stages) - 1))


def stage_status(state: ProgressState, index: int) -> StageStatus:
    if index < state.current_index:
        return StageStatus.COMPLETED
    if index == state.current_index:
        return StageStatus.CURRENT
    return StageStatus.LOCKED


def build_snapshot(state: ProgressState) -> JourneySnapshot:
    fraction = completion(state)
    return JourneySnapshot(
        idea_id=state.idea_id,
        revision=state.revision,
        stages=[
            StageView(stage=stage, status=stage_status(state, index), position=island_position(index))
            for index, stage in enumerate(state.stages)
        ],
        current_index=state.current_index,
        completed_count=len(state.completed_ids),
        completion=fraction,
        completion_percent=int(round(fraction * 100, 6)),
        is_finished=state.is_finished,
        boat_position=boat_position(state),
        notes={key: list(bucket) for key, bucket in state.notes.items()},
        reminders={key: list(bucket) for key, bucket in state.reminders.items()},
    )
