"""Calendar adapter interface and an in-process implementation."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Protocol

from .errors import CalendarWriteError

logger = logging.getLogger(__name__)


class CalendarAdapter(Protocol):
    """Device or service calendar the reminder store mirrors into.

    ``create_event`` and ``delete_event`` raise :class:`CalendarError`
    subclasses on failure.
    """

    async def request_write_access(self) -> bool:
        ...

    async def create_event(self, title: str, notes: str, start: datetime, end: datetime) -> str:
        ...

    async def delete_event(self, event_ref: str) -> None:
        ...


@dataclass(frozen=True)
class CalendarEvent:
    ref: str
    title: str
    notes: str
    start: datetime
    end: datetime


class LocalCalendar:
    """Keeps events in memory; access is granted unless configured otherwise."""

    def __init__(self, *, grant_access: bool = True) -> None:
        self.grant_access = grant_access
        self.events: Dict[str, CalendarEvent] = {}

    async def request_write_access(self) -> bool:
        return self.grant_access

    async def create_event(self, title: str, notes: str, start: datetime, end: datetime) -> str:
        if end < start:
            raise CalendarWriteError("Event ends before it starts.")
        ref = str(uuid.uuid4())
        self.events[ref] = CalendarEvent(ref=ref, title=title, notes=notes, start=start, end=end)
        logger.debug("Created calendar event %s (%s)", ref, title)
        return ref

    async def delete_event(self, event_ref: str) -> None:
        if self.events.pop(event_ref, None) is None:
            raise CalendarWriteError(f"No calendar event '{event_ref}'.")
