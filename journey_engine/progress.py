"""Pure state transitions over :class:`ProgressState`.

Nothing here performs I/O. Every function either mutates the state it is
given and bumps its revision, or leaves it untouched and says so.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Sequence, Tuple

from .errors import ValidationError
from .schemas import UNSCOPED_KEY, ProgressSignal, ProgressState, Reminder, Stage


class AdvanceOutcome(str, Enum):
    ADVANCED = "advanced"
    ALREADY_COMPLETE = "already_complete"


class ReconcileOutcome(str, Enum):
    ADVANCED = "advanced"
    UNCHANGED = "unchanged"
    # Dropped because a regeneration was in flight.
    DEFERRED = "deferred"


def new_state(idea_id: str, stages: Sequence[Stage]) -> ProgressState:
    """Fresh journey positioned on the first stage."""

    return ProgressState(idea_id=idea_id, stages=list(stages))


def _pass_through(state: ProgressState, target: int) -> None:
    """Move ``current_index`` to *target*, completing every stage below it."""

    completed = set(state.completed_ids)
    for stage in state.stages[:target]:
        if stage.id not in completed:
            state.completed_ids.append(stage.id)
            completed.add(stage.id)
    state.current_index = target
    state.touch()


def advance(state: ProgressState) -> AdvanceOutcome:
    """Complete the current stage and step onto the next one."""

    if state.is_finished:
        return AdvanceOutcome.ALREADY_COMPLETE
    _pass_through(state, state.current_index + 1)
    return AdvanceOutcome.ADVANCED


def complete_stage(state: ProgressState, stage_id: str) -> AdvanceOutcome:
    """Complete a stage by id. Only the current stage can move forward."""

    index = state.index_of(stage_id)
    if index is None:
        raise ValidationError(f"Unknown stage '{stage_id}'.")
    if index < state.current_index:
        return AdvanceOutcome.ALREADY_COMPLETE
    if index > state.current_index:
        raise ValidationError(f"Stage '{stage_id}' is locked.")
    return advance(state)


def target_index(state: ProgressState, signal: ProgressSignal) -> int:
    """Translate an external progress signal into a position, clamped to the journey."""

    total = len(state.stages)
    if signal.stage_id is not None:
        index = state.index_of(signal.stage_id)
        if index is None:
            raise ValidationError(f"Unknown stage '{signal.stage_id}'.")
        return index + 1
    if signal.goal_id is not None:
        stage = state.stage_for_goal(signal.goal_id)
        if stage is None:
            raise ValidationError(f"Goal '{signal.goal_id}' is not linked to any stage.")
        return stage.order + 1
    if signal.completed_count is not None:
        return min(signal.completed_count, total)
    return (signal.percent * total) // 100


def reconcile(state: ProgressState, signal: ProgressSignal) -> ReconcileOutcome:
    """Apply an external signal monotonically: the position only ever moves forward."""

    target = target_index(state, signal)
    if target <= state.current_index:
        return ReconcileOutcome.UNCHANGED
    _pass_through(state, target)
    return ReconcileOutcome.ADVANCED


def link_goals(state: ProgressState, stage_id: str, goal_ids: Sequence[str]) -> Stage:
    """Replace the goals linked to a stage. A goal belongs to at most one stage."""

    index = state.index_of(stage_id)
    if index is None:
        raise ValidationError(f"Unknown stage '{stage_id}'.")
    cleaned = list(dict.fromkeys(goal_id.strip() for goal_id in goal_ids if goal_id.strip()))
    for goal_id in cleaned:
        owner = state.stage_for_goal(goal_id)
        if owner is not None and owner.id != stage_id:
            raise ValidationError(f"Goal '{goal_id}' is already linked to stage '{owner.id}'.")
    stage = state.stages[index].model_copy(update={"goal_ids": cleaned})
    state.stages[index] = stage
    state.touch()
    return stage


def reset(state: ProgressState, stages: Sequence[Stage]) -> Tuple[ProgressState, List[Reminder]]:
    """Replace the catalog and restart the journey.

    Notes and stage-scoped reminders are keyed by stage ids that no longer
    exist, so they are dropped; unscoped reminders carry over. Returns the new
    state and the dropped reminders.
    """

    dropped = [
        reminder
        for key, bucket in state.reminders.items()
        if key != UNSCOPED_KEY
        for reminder in bucket
    ]
    reminders = {}
    if state.reminders.get(UNSCOPED_KEY):
        reminders[UNSCOPED_KEY] = list(state.reminders[UNSCOPED_KEY])
    fresh = ProgressState(
        idea_id=state.idea_id,
        stages=list(stages),
        reminders=reminders,
        revision=state.revision,
    )
    fresh.touch()
    return fresh, dropped


def completion(state: ProgressState) -> float:
    """Fraction of stages completed; 0 for an empty journey."""

    if not state.stages:
        return 0.0
    return len(state.completed_ids) / len(state.stages)
