"""Exception taxonomy shared by the catalog, engine and adapters."""

from __future__ import annotations


class JourneyError(Exception):
    """Base class for every error raised by the journey engine."""


class ValidationError(JourneyError):
    """Raised when an action is rejected before any state is touched."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class GenerationError(JourneyError):
    """AI stage generation failed; the catalog recovers with its template."""


class TransportError(GenerationError):
    """The AI call could not be completed (network, provider, timeout)."""


class MalformedResponseError(GenerationError):
    """The AI answered but the payload cannot be turned into valid stages."""


class PersistenceError(JourneyError):
    """A progress store could not read or write state."""


class CalendarError(JourneyError):
    """The calendar adapter refused or failed a request."""


class CalendarAccessDenied(CalendarError):
    """The user did not grant calendar write access."""


class CalendarWriteError(CalendarError):
    """The calendar accepted access but failed to write or delete an event."""


class JourneyNotOpen(JourneyError):
    """An operation needed a journey but none has been opened yet."""
