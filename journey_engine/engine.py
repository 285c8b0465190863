"""Journey orchestration: catalog, progress, notes, reminders and persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from . import progress
from .calendar_sync import CalendarAdapter
from .catalog import StageCatalog
from .errors import JourneyNotOpen, PersistenceError, ValidationError
from .llm import AIClient
from .notes import NotesStore, ReminderResult, ReminderStore
from .persistence import OrderedWriter, ProgressStore
from .progress import AdvanceOutcome, ReconcileOutcome
from .read_model import JourneySnapshot, build_snapshot
from .schemas import BusinessIdea, Note, ProgressSignal, ProgressState, Reminder, Stage

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "I'm here to help! Let's break down your question into actionable steps. "
    "What specific area would you like to focus on?"
)

Listener = Callable[[JourneySnapshot], None]


@dataclass(frozen=True)
class RegenerationResult:
    """Outcome of a catalog rebuild.

    ``applied`` is ``False`` when a newer regeneration or an idea switch
    superseded this one; the journey was left untouched in that case.
    """

    applied: bool
    used_fallback: bool
    stages: List[Stage]
    error: str | None = None


@dataclass(frozen=True)
class Answer:
    text: str
    used_fallback: bool


class JourneyEngine:
    """Single owner of one journey's :class:`ProgressState`.

    Designed for one cooperative event loop. Mutations are coroutines; each
    one that changes state schedules a save and notifies subscribers.
    """

    def __init__(
        self,
        catalog: StageCatalog,
        store: ProgressStore,
        *,
        calendar: CalendarAdapter | None = None,
        ai_client: AIClient | None = None,
    ) -> None:
        self._catalog = catalog
        self._writer = OrderedWriter(store)
        self._calendar = calendar
        self._ai_client = ai_client
        self._idea: BusinessIdea | None = None
        self._state: ProgressState | None = None
        self._notes: NotesStore | None = None
        self._reminders: ReminderStore | None = None
        self._committed_revision = -1
        self._generation = 0
        self._inflight: int | None = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def idea(self) -> BusinessIdea | None:
        return self._idea

    @property
    def state(self) -> ProgressState:
        if self._state is None:
            raise JourneyNotOpen("No journey has been opened.")
        return self._state

    @property
    def writer(self) -> OrderedWriter:
        return self._writer

    @property
    def is_regenerating(self) -> bool:
        return self._inflight is not None and self._inflight == self._generation

    def snapshot(self) -> JourneySnapshot:
        return build_snapshot(self.state)

    def notes_for(self, stage_id: str) -> List[Note]:
        return self._notes_store().notes_for(stage_id)

    def reminders_for(self, stage_id: str | None) -> List[Reminder]:
        return self._reminder_store().reminders_for(stage_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with a fresh snapshot after every mutation."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Journey listener %r failed", listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, idea: BusinessIdea, desired_count: int | None = None) -> JourneySnapshot | None:
        """Load the idea's saved journey, or start a template journey for it.

        Any regeneration still in flight for the previous idea is abandoned.
        Returns ``None`` when a later ``open`` superseded this one while its
        load was pending; the later idea stays installed.
        """

        self._generation += 1
        token = self._generation
        stored = None
        try:
            stored = await self._writer.store.load(idea.id)
        except PersistenceError as exc:
            logger.warning("Ignoring unreadable progress for idea %s: %s", idea.id, exc)

        if token != self._generation:
            logger.info("Discarding superseded open for idea %s", idea.id)
            return None

        if stored is not None:
            logger.info("Resuming journey for idea %s at stage %d", idea.id, stored.current_index)
            self._writer.mark_loaded(stored)
            self._install(idea, stored, committed=True)
        else:
            stages = self._catalog.build_template(idea, desired_count)
            fresh = progress.new_state(idea.id, stages)
            fresh.touch()
            logger.info("Starting a %d-stage journey for idea %s", len(stages), idea.id)
            self._install(idea, fresh, committed=False)
            self._commit()
        return self.snapshot()

    async def select_idea(self, idea: BusinessIdea) -> bool:
        """Switch to *idea*. Returns ``False`` when it is already the open idea."""

        if self._idea is not None and self._state is not None and self._idea.id == idea.id:
            self._idea = idea
            return False
        await self.open(idea)
        return True

    async def on_store_change(self, selected: BusinessIdea | None) -> None:
        """React to the business-plan store: idea switches and dashboard progress."""

        if selected is None:
            return
        await self.select_idea(selected)
        if self._state is None or self._state.idea_id != selected.id:
            return
        if selected.progress > 0:
            await self.reconcile(ProgressSignal(source="business_plan", percent=selected.progress))

    def _install(self, idea: BusinessIdea, state: ProgressState, *, committed: bool) -> None:
        self._idea = idea
        self._state = state
        self._notes = NotesStore(state)
        self._reminders = ReminderStore(state, self._calendar)
        self._committed_revision = state.revision if committed else -1
        if committed:
            self._notify()

    def _commit(self) -> None:
        """Persist and publish the current state if it changed since the last commit."""

        state = self.state
        if state.revision <= self._committed_revision:
            return
        self._committed_revision = state.revision
        self._writer.submit(state)
        self._notify()

    async def flush(self) -> None:
        """Wait for scheduled saves to land."""

        await self._writer.flush()

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    async def advance(self) -> AdvanceOutcome:
        """Complete the current stage. ``ALREADY_COMPLETE`` once the journey is done."""

        outcome = progress.advance(self.state)
        if outcome is AdvanceOutcome.ADVANCED:
            self._commit()
        else:
            logger.info("Journey for idea %s is already complete", self.state.idea_id)
        return outcome

    async def complete_stage(self, stage_id: str) -> AdvanceOutcome:
        outcome = progress.complete_stage(self.state, stage_id)
        self._commit()
        return outcome

    async def link_goals(self, stage_id: str, goal_ids: Sequence[str]) -> Stage:
        """Link dashboard goals to a stage so their completion can be reconciled."""

        stage = progress.link_goals(self.state, stage_id, goal_ids)
        self._commit()
        return stage

    async def reconcile(self, signal: ProgressSignal) -> ReconcileOutcome:
        """Fold an external progress signal into the journey, never moving backwards."""

        state = self.state
        if self.is_regenerating:
            logger.warning(
                "Dropping %s progress signal for idea %s: catalog regeneration in flight",
                signal.source,
                state.idea_id,
            )
            return ReconcileOutcome.DEFERRED
        outcome = progress.reconcile(state, signal)
        if outcome is ReconcileOutcome.ADVANCED:
            logger.info(
                "Reconciled %s signal for idea %s: now at stage %d",
                signal.source,
                state.idea_id,
                state.current_index,
            )
            self._commit()
        return outcome

    async def regenerate(
        self,
        idea: BusinessIdea | None = None,
        desired_count: int | None = None,
    ) -> RegenerationResult:
        """Rebuild the catalog and restart the journey.

        Only the most recent call is applied; earlier calls that resolve later
        return ``applied=False``. Completion, notes and stage-scoped reminders
        are discarded when the new catalog is applied.
        """

        state = self.state
        target = idea or self._idea
        if target is None or target.id != state.idea_id:
            raise ValidationError("Regeneration must target the open idea; switch ideas with select_idea().")
        count = self._catalog.validate_count(
            desired_count if desired_count is not None else self._catalog.default_count
        )

        self._generation += 1
        token = self._generation
        self._inflight = token
        try:
            result = await self._catalog.generate(target, count)
        finally:
            if self._inflight == token:
                self._inflight = None

        if token != self._generation or self._state is None or self._state.idea_id != target.id:
            logger.info("Discarding superseded regeneration for idea %s", target.id)
            return RegenerationResult(
                applied=False,
                used_fallback=result.used_fallback,
                stages=result.stages,
                error=result.error,
            )

        fresh, dropped = progress.reset(self._state, result.stages)
        self._install(target, fresh, committed=False)
        self._commit()
        if dropped:
            logger.info("Regeneration dropped %d stage reminders for idea %s", len(dropped), target.id)
            await self._reminder_store().release_calendar_events(dropped)
        return RegenerationResult(
            applied=True,
            used_fallback=result.used_fallback,
            stages=result.stages,
            error=result.error,
        )

    # ------------------------------------------------------------------
    # Notes and reminders
    # ------------------------------------------------------------------

    def _notes_store(self) -> NotesStore:
        if self._notes is None:
            raise JourneyNotOpen("No journey has been opened.")
        return self._notes

    def _reminder_store(self) -> ReminderStore:
        if self._reminders is None:
            raise JourneyNotOpen("No journey has been opened.")
        return self._reminders

    async def add_note(self, stage_id: str, content: str, tags: Sequence[str] = ()) -> Note:
        note = self._notes_store().add_note(stage_id, content, tags)
        self._commit()
        return note

    async def update_note(self, note_id: str, content: str) -> Note:
        note = self._notes_store().update_note(note_id, content)
        self._commit()
        return note

    async def delete_note(self, note_id: str) -> bool:
        removed = self._notes_store().delete_note(note_id)
        self._commit()
        return removed

    async def add_reminder(
        self,
        stage_id: Optional[str],
        title: str,
        message: str,
        scheduled_date: datetime,
        notify_via_calendar: bool = False,
    ) -> ReminderResult:
        """Create a reminder; calendar problems come back as ``result.warning``."""

        store = self._reminder_store()
        try:
            return await store.add_reminder(stage_id, title, message, scheduled_date, notify_via_calendar)
        finally:
            # Persist even when the calendar call blew up after the reminder was stored.
            self._commit()

    async def complete_reminder(self, reminder_id: str) -> Reminder:
        reminder = self._reminder_store().complete_reminder(reminder_id)
        self._commit()
        return reminder

    async def delete_reminder(self, reminder_id: str) -> bool:
        store = self._reminder_store()
        try:
            return await store.delete_reminder(reminder_id)
        finally:
            self._commit()

    # ------------------------------------------------------------------
    # AI assistance
    # ------------------------------------------------------------------

    def progress_context(self) -> str:
        """Short description of where the user is, used to ground AI answers."""

        state = self.state
        total = len(state.stages)
        percent = self.snapshot().completion_percent
        lines = []
        if self._idea is not None:
            lines.append(f"Business: {self._idea.title}")
        if state.is_finished:
            lines.append(f"Progress: {percent}% complete. All {total} stages are done.")
        else:
            current = state.stages[state.current_index]
            lines.append(
                f"Progress: {percent}% complete. On stage {state.current_index + 1} of {total}: {current.title}."
            )
        recent = sorted(
            (note for bucket in state.notes.values() for note in bucket),
            key=lambda note: note.created_at,
        )[-3:]
        if recent:
            lines.append(f"Recent notes: {', '.join(note.content for note in recent)}")
        return "\n".join(lines)

    async def ask(self, question: str) -> Answer:
        """Answer a progress question, falling back to a canned nudge if the AI fails."""

        text = question.strip()
        if not text:
            raise ValidationError("Question cannot be empty.")
        if self._ai_client is None:
            return Answer(text=FALLBACK_ANSWER, used_fallback=True)
        try:
            reply = await self._ai_client.answer_progress_question(text, self.progress_context())
        except Exception as exc:
            logger.warning("Progress question failed, using fallback answer: %s", exc)
            return Answer(text=FALLBACK_ANSWER, used_fallback=True)
        if not reply.strip():
            return Answer(text=FALLBACK_ANSWER, used_fallback=True)
        return Answer(text=reply.strip(), used_fallback=False)
