"""Timer engine error kinds.

Each error carries a stable ``code`` so the service layer can convert it
into a :class:`~tmrctl.services.result.ServiceError` without string
matching on messages.
"""

from __future__ import annotations

from typing import Any


class TimerError(Exception):
    """Base class for all engine errors."""

    code = "TIMER_ERROR"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class AssignmentDenied(TimerError):
    """The caller is not authorized to time this task."""

    code = "ASSIGNMENT_DENIED"


class AlreadyActive(TimerError):
    """The user already has a running or paused session."""

    code = "ALREADY_ACTIVE"


class InvalidTransition(TimerError):
    """The operation is not allowed from the current status."""

    code = "INVALID_TRANSITION"


class PauseBudgetExceeded(TimerError):
    """No pauses left for this session. Terminal, not retried."""

    code = "PAUSE_BUDGET_EXCEEDED"


class SyncTransportError(TimerError):
    """The store could not be reached. Recoverable; retried with backoff."""

    code = "SYNC_TRANSPORT_ERROR"


class ConflictUnresolved(TimerError):
    """Writes to this slot are blocked until a parked conflict is resolved."""

    code = "CONFLICT_UNRESOLVED"


class ConflictNotFound(TimerError):
    """No parked conflict with the given id."""

    code = "CONFLICT_NOT_FOUND"


class InvariantViolation(TimerError):
    """A programming error: the engine was driven into an impossible call."""

    code = "INVARIANT_VIOLATION"
