"""Error taxonomy for calendar tools.

Extraction problems never surface here: the detail extractor degrades to
best-effort defaults instead.  Workflow errors abort a single duplication
attempt and are reported to the user.  Resilience errors feed the supervisor's
health accounting and trigger recovery rather than crashing the process.
"""

from __future__ import annotations


class CalendarToolsError(Exception):
    """Base error for the calendar tools package."""

    #: Short user-facing message used by the notification sink.
    user_message = "Something went wrong"

    def __init__(self, message: str, *, event_id: str | None = None) -> None:
        self.event_id = event_id
        super().__init__(message)


class InitializationTimeout(CalendarToolsError):
    """Raised when the host application never became ready within the retry budget."""

    user_message = "Calendar did not finish loading"


class DetailSurfaceTimeout(CalendarToolsError):
    """Raised when the event detail surface did not appear after clicking a card."""

    user_message = "Event details did not open"


class RecordNotFound(CalendarToolsError):
    """Raised when a duplication is requested for an event id that is not tracked."""

    user_message = "Event not found"


class ElementDetached(CalendarToolsError):
    """Raised when a tracked record's backing element is no longer in the document."""

    user_message = "Event no longer available"


class InvalidTargetDate(CalendarToolsError, ValueError):
    """Raised when a target date is not a valid calendar date."""

    user_message = "Could not work out the target date"


class DuplicateInProgress(CalendarToolsError):
    """Raised when a duplication for the same event id is already running."""

    user_message = "Duplication already in progress"


class CredentialMissing(CalendarToolsError):
    """Raised when no credential source produced a usable bearer token."""

    user_message = "Not signed in to the calendar API"


class CreationFailed(CalendarToolsError):
    """Raised when the event-creation collaborator could not create the event."""

    user_message = "Failed to create duplicate event"

    def __init__(
        self,
        message: str,
        *,
        event_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, event_id=event_id)


class EnhancementTimeout(CalendarToolsError):
    """Raised when enhancing one host element exceeded its deadline."""

    user_message = "Event card enhancement timed out"


class DuplicationFailed(CalendarToolsError):
    """Raised when a host collaborator failed unexpectedly during a duplication."""

    user_message = "Failed to duplicate event"


class DayCopyFailed(CalendarToolsError):
    """Raised when a Copy Day request failed outside a single event's creation."""

    user_message = "Error occurred while copying day"
