"""Per-stage notes and reminders, including calendar mirroring for reminders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .calendar_sync import CalendarAdapter
from .errors import CalendarAccessDenied, CalendarError, ValidationError
from .schemas import UNSCOPED_KEY, Note, ProgressState, Reminder, utc_now

logger = logging.getLogger(__name__)

CALENDAR_EVENT_LENGTH = timedelta(hours=1)


@dataclass(frozen=True)
class ReminderResult:
    """A created reminder plus a non-fatal calendar warning, if any."""

    reminder: Reminder
    warning: str | None = None


def _require_stage(state: ProgressState, stage_id: str) -> None:
    if state.index_of(stage_id) is None:
        raise ValidationError(f"Unknown stage '{stage_id}'.")


class NotesStore:
    """Notes keyed by stage id, bound to one :class:`ProgressState`."""

    def __init__(self, state: ProgressState) -> None:
        self._state = state

    def add_note(self, stage_id: str, content: str, tags: Sequence[str] = ()) -> Note:
        text = content.strip()
        if not text:
            raise ValidationError("Note content cannot be empty.")
        _require_stage(self._state, stage_id)
        note = Note(stage_id=stage_id, content=text, tags=[tag.strip() for tag in tags if tag.strip()])
        self._state.notes.setdefault(stage_id, []).append(note)
        self._state.touch()
        return note

    def update_note(self, note_id: str, content: str) -> Note:
        text = content.strip()
        if not text:
            raise ValidationError("Note content cannot be empty.")
        note = self.find(note_id)
        if note is None:
            raise ValidationError(f"Unknown note '{note_id}'.")
        note.content = text
        note.updated_at = utc_now()
        self._state.touch()
        return note

    def delete_note(self, note_id: str) -> bool:
        """Remove a note; returns ``False`` (and changes nothing) if it is absent."""

        for stage_id, bucket in self._state.notes.items():
            for position, note in enumerate(bucket):
                if note.id == note_id:
                    del bucket[position]
                    if not bucket:
                        del self._state.notes[stage_id]
                    self._state.touch()
                    return True
        return False

    def find(self, note_id: str) -> Note | None:
        for bucket in self._state.notes.values():
            for note in bucket:
                if note.id == note_id:
                    return note
        return None

    def notes_for(self, stage_id: str) -> List[Note]:
        return list(self._state.notes.get(stage_id, []))


class ReminderStore:
    """Reminders keyed by stage id (or ``"unscoped"``).

    Calendar failures never block a reminder: the reminder is stored first and
    the calendar outcome is reported as a warning.
    """

    def __init__(self, state: ProgressState, calendar: CalendarAdapter | None = None) -> None:
        self._state = state
        self._calendar = calendar

    async def add_reminder(
        self,
        stage_id: Optional[str],
        title: str,
        message: str,
        scheduled_date: datetime,
        notify_via_calendar: bool = False,
    ) -> ReminderResult:
        clean_title = title.strip()
        if not clean_title:
            raise ValidationError("Reminder title cannot be empty.")
        if stage_id is not None:
            _require_stage(self._state, stage_id)

        reminder = Reminder(
            stage_id=stage_id,
            title=clean_title,
            message=message,
            scheduled_date=scheduled_date,
            notify_via_calendar=notify_via_calendar,
        )
        self._state.reminders.setdefault(stage_id or UNSCOPED_KEY, []).append(reminder)
        self._state.touch()

        warning = None
        if notify_via_calendar:
            warning = await self._mirror_to_calendar(reminder)
            if reminder.calendar_event_ref:
                self._state.touch()
        return ReminderResult(reminder=reminder, warning=warning)

    async def _mirror_to_calendar(self, reminder: Reminder) -> str | None:
        if self._calendar is None:
            return "No calendar is configured; reminder saved without a calendar event."
        try:
            if not await self._calendar.request_write_access():
                raise CalendarAccessDenied("Calendar access was not granted.")
            event_ref = await self._calendar.create_event(
                title=reminder.title,
                notes=reminder.message,
                start=reminder.scheduled_date,
                end=reminder.scheduled_date + CALENDAR_EVENT_LENGTH,
            )
        except CalendarError as exc:
            logger.warning("Reminder %s saved without calendar event: %s", reminder.id, exc)
            return str(exc)
        except Exception as exc:
            logger.exception("Calendar adapter failed for reminder %s", reminder.id)
            return f"Calendar unavailable: {exc}"
        reminder.calendar_event_ref = event_ref
        return None

    def complete_reminder(self, reminder_id: str) -> Reminder:
        reminder = self.find(reminder_id)
        if reminder is None:
            raise ValidationError(f"Unknown reminder '{reminder_id}'.")
        if not reminder.is_completed:
            reminder.is_completed = True
            reminder.completed_at = utc_now()
            self._state.touch()
        return reminder

    async def delete_reminder(self, reminder_id: str) -> bool:
        """Remove a reminder locally, then try to remove its calendar event."""

        removed = None
        for key, bucket in self._state.reminders.items():
            for position, reminder in enumerate(bucket):
                if reminder.id == reminder_id:
                    removed = bucket.pop(position)
                    if not bucket:
                        del self._state.reminders[key]
                    break
            if removed is not None:
                break
        if removed is None:
            return False
        self._state.touch()
        await self.release_calendar_events([removed])
        return True

    async def release_calendar_events(self, reminders: Sequence[Reminder]) -> None:
        """Best-effort deletion of the calendar events behind *reminders*."""

        if self._calendar is None:
            return
        for reminder in reminders:
            if not reminder.calendar_event_ref:
                continue
            try:
                await self._calendar.delete_event(reminder.calendar_event_ref)
            except Exception as exc:
                logger.warning(
                    "Could not delete calendar event %s for reminder %s: %s",
                    reminder.calendar_event_ref,
                    reminder.id,
                    exc,
                )

    def find(self, reminder_id: str) -> Reminder | None:
        for bucket in self._state.reminders.values():
            for reminder in bucket:
                if reminder.id == reminder_id:
                    return reminder
        return None

    def reminders_for(self, stage_id: str | None) -> List[Reminder]:
        return list(self._state.reminders.get(stage_id or UNSCOPED_KEY, []))
