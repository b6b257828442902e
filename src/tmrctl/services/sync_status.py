"""SyncStatusTracker — connectivity, last sync, errors, open conflicts."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel

from tmrctl.domain.conflicts import Conflict
from tmrctl.domain.events import EventChannel

if TYPE_CHECKING:
    from collections.abc import Callable

    from tmrctl.domain.clock import Clock


class SyncStatus(BaseModel):
    """Immutable status snapshot published on every change."""

    model_config = {"frozen": True}

    is_connected: bool = False
    last_sync_time: datetime | None = None
    sync_error: str | None = None
    conflict_detected: bool = False
    conflict_data: Conflict | None = None


class SyncStatusTracker:
    """Aggregates listener lifecycle and resolution outcomes."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._status = SyncStatus()
        self._lock = threading.Lock()
        self._channel: EventChannel[SyncStatus] = EventChannel("sync-status")

    @property
    def status(self) -> SyncStatus:
        return self._status

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Observe every status change; returns an unsubscribe handle."""
        return self._channel.subscribe(callback)

    def mark_connected(self) -> None:
        self._update(is_connected=True)

    def mark_disconnected(self) -> None:
        self._update(is_connected=False)

    def mark_synced(self) -> None:
        """A batch was processed: stamp the time and clear any error."""
        self._update(last_sync_time=self._clock.now(), sync_error=None)

    def mark_error(self, message: str) -> None:
        self._update(sync_error=message)

    def clear_error(self) -> None:
        self._update(sync_error=None)

    def mark_conflict(self, conflict: Conflict) -> None:
        self._update(conflict_detected=True, conflict_data=conflict)

    def clear_conflict(self, conflict_id: str | None = None) -> None:
        """Clear the exposed conflict (only if it matches *conflict_id*)."""
        current = self._status.conflict_data
        if conflict_id is not None and current is not None and current.id != conflict_id:
            return
        self._update(conflict_detected=False, conflict_data=None)

    def _update(self, **changes: object) -> None:
        with self._lock:
            self._status = self._status.model_copy(update=changes)
            snapshot = self._status
        self._channel.publish(snapshot)
