"""Interfaces for the engine's external collaborators.

Infrastructure provides the concrete implementations (SQLite store,
assignment-table authorizer); tests provide in-memory fakes.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel

from tmrctl.domain.session import SessionKey, TimeLog, TimerSession


class ChangeType(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class RemoteChange(BaseModel):
    """One entry of a store change batch. Removals carry the last snapshot."""

    model_config = {"frozen": True}

    type: ChangeType
    snapshot: TimerSession
    sequence: int = 0


class Authorizer(Protocol):
    def can_start_timer(self, user_id: str, project_id: str, task_id: str) -> bool: ...


class Subscription(Protocol):
    def poll(self) -> list[RemoteChange]:
        """Return the next ordered batch (possibly empty)."""
        ...

    def close(self) -> None: ...


class SessionStore(Protocol):
    """Shared, eventually-consistent session store.

    Transport failures raise :class:`~tmrctl.domain.errors.SyncTransportError`;
    a second active session for a user raises
    :class:`~tmrctl.domain.errors.AlreadyActive`.
    """

    def create(self, session: TimerSession) -> None: ...

    def update(self, session: TimerSession) -> None: ...

    def delete(self, key: SessionKey) -> None: ...

    def get(self, key: SessionKey) -> TimerSession | None: ...

    def query_active_for_user(self, user_id: str) -> list[TimerSession]: ...

    def subscribe(self, user_id: str) -> Subscription: ...

    def append_log(self, session: TimerSession) -> None: ...

    def list_logs(self, user_id: str, *, limit: int = 20) -> list[TimeLog]: ...


class AllowAllAuthorizer:
    """Authorizer that lets every user time every task."""

    def can_start_timer(self, user_id: str, project_id: str, task_id: str) -> bool:
        return True
