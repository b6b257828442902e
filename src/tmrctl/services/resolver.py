"""ConflictResolver — turns a detected Conflict into the canonical session.

Strategies:

- ``server_wins``: the remote snapshot is already the stored value.
- ``local_wins``: the local snapshot is re-stamped and written back. For
  a ``different_timer`` conflict the remote session is first stopped
  with reason ``superseded`` so only one session stays active.
- ``merge``: :func:`~tmrctl.domain.conflicts.merge_sessions`, written back
  when it differs from the remote.
- ``user_choice``: the conflict is parked and its slot refuses writes
  until :meth:`ConflictResolver.resolve_pending` is called.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from tmrctl.domain.conflicts import Conflict, ConflictType, ResolutionStrategy, merge_sessions
from tmrctl.domain.errors import ConflictNotFound, ConflictUnresolved
from tmrctl.domain.events import EventKind, TimerEvent
from tmrctl.domain.lifecycle import StopReason, TimerStatus
from tmrctl.domain.machine import new_idempotency_key
from tmrctl.domain.session import TimerSession

if TYPE_CHECKING:
    from datetime import datetime

    from tmrctl.domain.clock import Clock
    from tmrctl.domain.events import EventChannel
    from tmrctl.domain.ports import SessionStore
    from tmrctl.services.optimistic import OptimisticUpdateTracker
    from tmrctl.services.sync_status import SyncStatusTracker

log = structlog.get_logger(__name__)

_MIN_STEP = timedelta(microseconds=1)


class Resolution(BaseModel):
    """Outcome of a non-deferred resolution."""

    model_config = {"frozen": True}

    conflict_id: str
    conflict_type: ConflictType
    strategy: ResolutionStrategy
    session: TimerSession
    written: bool = False


class ConflictResolver:
    """Applies resolution strategies and tracks parked conflicts.

    Parameters:
        store: Where resolved snapshots are written back.
        tracker: Optimistic entries to clear once a slot is resolved.
        status: Exposes the open conflict to observers.
        clock: Used to stamp written snapshots.
        device_id: Stamped on written snapshots.
        channel: Receives ``conflict_detected``/``conflict_resolved`` events.
    """

    def __init__(
        self,
        store: SessionStore,
        tracker: OptimisticUpdateTracker,
        status: SyncStatusTracker,
        *,
        clock: Clock,
        device_id: str,
        channel: EventChannel[TimerEvent] | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._status = status
        self._clock = clock
        self._device_id = device_id
        self._channel = channel
        self._parked: dict[str, Conflict] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, conflict: Conflict, strategy: ResolutionStrategy) -> Resolution | None:
        """Announce *conflict* and resolve it, or park it for ``user_choice``."""
        self._status.mark_conflict(conflict)
        self._emit(
            EventKind.CONFLICT_DETECTED,
            conflict,
            conflict_id=conflict.id,
            conflict_type=str(conflict.conflict_type),
        )
        if strategy == ResolutionStrategy.USER_CHOICE:
            with self._lock:
                self._parked[conflict.id] = conflict
            log.info("conflict.parked", conflict_id=conflict.id, slot=conflict.slot)
            return None
        return self.resolve(conflict, strategy)

    def resolve(self, conflict: Conflict, strategy: ResolutionStrategy) -> Resolution:
        """Resolve *conflict* now with a concrete strategy."""
        if strategy == ResolutionStrategy.USER_CHOICE:
            msg = "user_choice defers resolution; pick a concrete strategy"
            raise ValueError(msg)

        now = self._clock.now()
        written = False
        if strategy == ResolutionStrategy.SERVER_WINS:
            result = conflict.remote
        elif strategy == ResolutionStrategy.LOCAL_WINS:
            if conflict.conflict_type == ConflictType.DIFFERENT_TIMER and conflict.remote.is_active:
                self._supersede(conflict.remote, now)
            result = self._restamp(conflict.local, conflict.remote, now)
            self._write(result)
            written = True
        else:
            result = merge_sessions(conflict.local, conflict.remote)
            if result != conflict.remote:
                result = self._restamp(result, conflict.remote, now)
                self._write(result)
                written = True

        with self._lock:
            self._parked.pop(conflict.id, None)
        self._tracker.clear(conflict.slot)
        self._status.clear_conflict(conflict.id)
        self._emit(
            EventKind.CONFLICT_RESOLVED,
            conflict,
            conflict_id=conflict.id,
            strategy=str(strategy),
            written=written,
        )
        log.info(
            "conflict.resolved",
            conflict_id=conflict.id,
            slot=conflict.slot,
            strategy=str(strategy),
            written=written,
        )
        return Resolution(
            conflict_id=conflict.id,
            conflict_type=conflict.conflict_type,
            strategy=strategy,
            session=result,
            written=written,
        )

    def resolve_pending(self, conflict_id: str, strategy: ResolutionStrategy) -> Resolution:
        """Resolve a parked ``user_choice`` conflict."""
        with self._lock:
            conflict = self._parked.get(conflict_id)
        if conflict is None:
            raise ConflictNotFound(f"No pending conflict {conflict_id}", conflict_id=conflict_id)
        return self.resolve(conflict, strategy)

    def restore(self, conflict: Conflict) -> None:
        """Park a ``user_choice`` conflict saved by an earlier process."""
        with self._lock:
            self._parked[conflict.id] = conflict
        self._status.mark_conflict(conflict)

    def pending(self) -> list[Conflict]:
        with self._lock:
            return list(self._parked.values())

    def blocking(self, slot: str) -> Conflict | None:
        with self._lock:
            for conflict in self._parked.values():
                if conflict.slot == slot:
                    return conflict
        return None

    def ensure_writable(self, slot: str) -> None:
        """Raise ConflictUnresolved while a parked conflict holds *slot*."""
        conflict = self.blocking(slot)
        if conflict is not None:
            raise ConflictUnresolved(
                f"Timer has an unresolved {conflict.conflict_type} conflict",
                conflict_id=conflict.id,
                conflict_type=str(conflict.conflict_type),
            )

    def refresh_remote(self, remote: TimerSession) -> bool:
        """Replace the remote side of a parked conflict with a newer snapshot."""
        with self._lock:
            for conflict_id, conflict in self._parked.items():
                if conflict.slot == remote.slot and remote.last_updated > conflict.remote.last_updated:
                    self._parked[conflict_id] = conflict.model_copy(update={"remote": remote})
                    return True
        return False

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _supersede(self, remote: TimerSession, now: datetime) -> None:
        pause = remote.current_pause_seconds(now)
        total = remote.total_paused_seconds + pause
        stopped = self._restamp(
            remote.evolve(
                status=TimerStatus.STOPPED,
                stop_reason=StopReason.SUPERSEDED,
                end_time=now,
                paused_at=None,
                total_paused_seconds=total,
                pause_time_used_seconds=max(remote.pause_time_used_seconds, int(total)),
            ),
            remote,
            now,
        )
        self._store.update(stopped)
        self._tracker.remember(stopped.idempotency_key)
        self._store.append_log(stopped)
        log.info("conflict.superseded", key=str(remote.key))

    def _restamp(self, session: TimerSession, other: TimerSession, now: datetime) -> TimerSession:
        """New version that sorts after both sides of the conflict."""
        floor = max(session.last_updated, other.last_updated)
        stamp = now if now > floor else floor + _MIN_STEP
        return session.evolve(
            last_updated=stamp,
            device_id=self._device_id,
            idempotency_key=new_idempotency_key(),
            sync_version=max(session.sync_version, other.sync_version) + 1,
        )

    def _write(self, session: TimerSession) -> None:
        self._tracker.remember(session.idempotency_key)
        if self._store.get(session.key) is None:
            self._store.create(session)
        else:
            self._store.update(session)

    def _emit(self, kind: EventKind, conflict: Conflict, **data: object) -> None:
        if self._channel is None:
            return
        self._channel.publish(
            TimerEvent(kind=kind, key=conflict.local.key, at=self._clock.now(), data=dict(data))
        )
