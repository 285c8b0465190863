"""Journey endpoints for the journey engine's FastAPI surface."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..engine import JourneyEngine
from ..progress import AdvanceOutcome, ReconcileOutcome
from ..read_model import JourneySnapshot
from ..registry import JourneyRegistry
from ..schemas import (
    AnswerResponse,
    GoalLink,
    Note,
    NoteCreate,
    NoteUpdate,
    OpenJourneyRequest,
    ProgressSignal,
    QuestionRequest,
    RegenerateRequest,
    Reminder,
    ReminderCreate,
    ReminderResponse,
    Stage,
)


router = APIRouter(prefix="/journey", tags=["journey"])


class AdvanceResponse(BaseModel):
    outcome: AdvanceOutcome
    journey: JourneySnapshot


class ReconcileResponse(BaseModel):
    outcome: ReconcileOutcome
    journey: JourneySnapshot


class RegenerateResponse(BaseModel):
    applied: bool
    used_fallback: bool
    error: Optional[str] = None
    stages: List[Stage]
    journey: JourneySnapshot


class DeleteResponse(BaseModel):
    deleted: bool


def _registry(request: Request) -> JourneyRegistry:
    return request.app.state.registry


def _engine(request: Request, idea_id: str) -> JourneyEngine:
    """Return the open engine for *idea_id* or answer 404."""

    engine = _registry(request).get(idea_id)
    if engine is None or engine.idea is None:
        raise HTTPException(status_code=404, detail=f"No journey has been opened for idea '{idea_id}'.")
    return engine


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@router.post("/{idea_id}/open", response_model=JourneySnapshot)
async def open_journey(idea_id: str, payload: OpenJourneyRequest, request: Request) -> JourneySnapshot:
    """Resume the idea's journey, or start a template journey for it."""

    if payload.idea.id != idea_id:
        raise HTTPException(status_code=422, detail="Idea id in the body does not match the path.")
    engine = _registry(request).get_or_create(idea_id)
    if engine.idea is not None:
        await engine.select_idea(payload.idea)
        return engine.snapshot()
    snapshot = await engine.open(payload.idea)
    return snapshot or engine.snapshot()


@router.get("/{idea_id}", response_model=JourneySnapshot)
async def fetch_journey(idea_id: str, request: Request) -> JourneySnapshot:
    """Return the read model for an open journey."""

    return _engine(request, idea_id).snapshot()


@router.post("/{idea_id}/advance", response_model=AdvanceResponse)
async def advance(idea_id: str, request: Request) -> AdvanceResponse:
    engine = _engine(request, idea_id)
    outcome = await engine.advance()
    if outcome is AdvanceOutcome.ALREADY_COMPLETE:
        raise HTTPException(status_code=409, detail="The journey is already complete.")
    return AdvanceResponse(outcome=outcome, journey=engine.snapshot())


@router.post("/{idea_id}/stages/{stage_id}/complete", response_model=AdvanceResponse)
async def complete_stage(idea_id: str, stage_id: str, request: Request) -> AdvanceResponse:
    engine = _engine(request, idea_id)
    outcome = await engine.complete_stage(stage_id)
    return AdvanceResponse(outcome=outcome, journey=engine.snapshot())


@router.put("/{idea_id}/stages/{stage_id}/goals", response_model=Stage)
async def link_goals(idea_id: str, stage_id: str, payload: GoalLink, request: Request) -> Stage:
    """Replace the dashboard goals linked to a stage."""

    return await _engine(request, idea_id).link_goals(stage_id, payload.goal_ids)


@router.post("/{idea_id}/reconcile", response_model=ReconcileResponse)
async def reconcile(idea_id: str, signal: ProgressSignal, request: Request) -> ReconcileResponse:
    """Apply an external progress signal such as a dashboard goal completion."""

    engine = _engine(request, idea_id)
    outcome = await engine.reconcile(signal)
    return ReconcileResponse(outcome=outcome, journey=engine.snapshot())


@router.post("/{idea_id}/regenerate", response_model=RegenerateResponse)
async def regenerate(idea_id: str, payload: RegenerateRequest, request: Request) -> RegenerateResponse:
    """Rebuild the stage catalog. Wipes completion and stage notes."""

    engine = _engine(request, idea_id)
    result = await engine.regenerate(payload.idea, payload.desired_count)
    return RegenerateResponse(
        applied=result.applied,
        used_fallback=result.used_fallback,
        error=result.error,
        stages=result.stages,
        journey=engine.snapshot(),
    )


@router.post("/{idea_id}/notes", response_model=Note, status_code=201)
async def add_note(idea_id: str, payload: NoteCreate, request: Request) -> Note:
    return await _engine(request, idea_id).add_note(payload.stage_id, payload.content, payload.tags)


@router.patch("/{idea_id}/notes/{note_id}", response_model=Note)
async def update_note(idea_id: str, note_id: str, payload: NoteUpdate, request: Request) -> Note:
    return await _engine(request, idea_id).update_note(note_id, payload.content)


@router.delete("/{idea_id}/notes/{note_id}", response_model=DeleteResponse)
async def delete_note(idea_id: str, note_id: str, request: Request) -> DeleteResponse:
    return DeleteResponse(deleted=await _engine(request, idea_id).delete_note(note_id))


@router.post("/{idea_id}/reminders", response_model=ReminderResponse, status_code=201)
async def add_reminder(idea_id: str, payload: ReminderCreate, request: Request) -> ReminderResponse:
    """Create a reminder; calendar problems are reported in ``warning``."""

    result = await _engine(request, idea_id).add_reminder(
        payload.stage_id,
        payload.title,
        payload.message,
        payload.scheduled_date,
        payload.notify_via_calendar,
    )
    return ReminderResponse(reminder=result.reminder, warning=result.warning)


@router.post("/{idea_id}/reminders/{reminder_id}/complete", response_model=Reminder)
async def complete_reminder(idea_id: str, reminder_id: str, request: Request) -> Reminder:
    return await _engine(request, idea_id).complete_reminder(reminder_id)


@router.delete("/{idea_id}/reminders/{reminder_id}", response_model=DeleteResponse)
async def delete_reminder(idea_id: str, reminder_id: str, request: Request) -> DeleteResponse:
    return DeleteResponse(deleted=await _engine(request, idea_id).delete_reminder(reminder_id))


@router.post("/{idea_id}/ask", response_model=AnswerResponse)
async def ask(idea_id: str, payload: QuestionRequest, request: Request) -> AnswerResponse:
    answer = await _engine(request, idea_id).ask(payload.question)
    return AnswerResponse(answer=answer.text, used_fallback=answer.used_fallback)
