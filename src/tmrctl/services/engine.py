"""TimerEngine — composition root for one user's timer on one device.

Wires the state machine, optimistic tracker, remote listener, conflict
detector/resolver, and sync status around an injected store, clock, and
authorizer. Nothing here is global: every collaborator is passed in.

Mutation path::

    write check -> machine op -> optimistic apply -> store write -> acknowledge

A :class:`~tmrctl.domain.errors.SyncTransportError` during the store
write keeps the local mutation (offline-first); :meth:`TimerEngine.reconcile`
pushes it once the store is reachable again.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from tmrctl.config.models import SyncConfig, TimerConfig
from tmrctl.domain.clock import SystemClock
from tmrctl.domain.conflicts import ConflictDetector, Outcome, ResolutionStrategy
from tmrctl.domain.errors import AlreadyActive, SyncTransportError
from tmrctl.domain.events import EventChannel, EventKind, TimerEvent
from tmrctl.domain.lifecycle import StopReason
from tmrctl.domain.machine import TimerPolicy, TimerStateMachine
from tmrctl.domain.ports import ChangeType
from tmrctl.services.listener import RemoteChangeListener
from tmrctl.services.optimistic import OptimisticUpdateTracker
from tmrctl.services.resolver import ConflictResolver
from tmrctl.services.scheduler import TickScheduler
from tmrctl.services.sync_status import SyncStatus, SyncStatusTracker

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tmrctl.domain.clock import Clock
    from tmrctl.domain.conflicts import Conflict
    from tmrctl.domain.machine import TickResult, TimerProjection
    from tmrctl.domain.ports import Authorizer, RemoteChange, SessionStore
    from tmrctl.domain.session import TimerSession
    from tmrctl.services.optimistic import OptimisticEntry

log = structlog.get_logger(__name__)


class ReconcileReport(BaseModel):
    """What :meth:`TimerEngine.reconcile` did."""

    model_config = {"frozen": True}

    pushed: int = 0
    conflicts: int = 0
    adopted: bool = False


class TimerEngine:
    """Public face of the timer engine for one user.

    Parameters:
        user_id: Owner of the timer.
        store: Shared session store.
        device_id: Identifies this writer on every snapshot.
        clock: Wall-clock source (defaults to UTC system time).
        authorizer: Consulted on ``start()``; None allows everything.
        timer_config: Pause budget and tick interval.
        sync_config: Optimistic TTL, drift window, strategy, retries.
        channel: Timer event channel; a fresh one is created if omitted.
        sleep: Backoff sleeper handed to the listener.
    """

    def __init__(
        self,
        user_id: str,
        *,
        store: SessionStore,
        device_id: str,
        clock: Clock | None = None,
        authorizer: Authorizer | None = None,
        timer_config: TimerConfig | None = None,
        sync_config: SyncConfig | None = None,
        channel: EventChannel[TimerEvent] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._device_id = device_id
        self._clock = clock or SystemClock()
        self._timer_config = timer_config or TimerConfig()
        self._sync_config = sync_config or SyncConfig()
        self._lock = threading.RLock()
        self._offline = False

        self.events: EventChannel[TimerEvent] = channel or EventChannel("timer")
        self._machine = TimerStateMachine(
            user_id,
            device_id=device_id,
            clock=self._clock,
            policy=TimerPolicy(
                max_pause_count=self._timer_config.max_pause_count,
                max_pause_time_seconds=self._timer_config.max_pause_time_seconds,
                pause_warning_seconds=self._timer_config.pause_warning_seconds,
            ),
            authorizer=authorizer,
            channel=self.events,
        )
        self._tracker = OptimisticUpdateTracker(
            self._clock, ttl_seconds=self._sync_config.optimistic_ttl_seconds
        )
        self._sync_status = SyncStatusTracker(self._clock)
        self._detector = ConflictDetector(self._tracker, max_drift_ms=self._sync_config.max_drift_ms)
        self._resolver = ConflictResolver(
            store,
            self._tracker,
            self._sync_status,
            clock=self._clock,
            device_id=device_id,
            channel=self.events,
        )
        listener_kwargs = {"sleep": sleep} if sleep is not None else {}
        self._listener = RemoteChangeListener(
            store,
            user_id,
            status=self._sync_status,
            on_change=self._on_remote_change,
            on_reconnect=self._on_reconnect,
            max_attempts=self._sync_config.max_retries,
            base_delay=self._sync_config.retry_base_delay,
            max_delay=self._sync_config.retry_max_delay,
            **listener_kwargs,
        )
        self._scheduler: TickScheduler | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def session(self) -> TimerSession | None:
        return self._machine.session

    @property
    def offline(self) -> bool:
        """True while local mutations are waiting for the store."""
        return self._offline

    @property
    def sync_status(self) -> SyncStatus:
        return self._sync_status.status

    @property
    def tracker(self) -> OptimisticUpdateTracker:
        return self._tracker

    def subscribe_status(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        return self._sync_status.subscribe(callback)

    def projection(self) -> TimerProjection:
        with self._lock:
            self._refresh()
            return self._machine.projection()

    def pending_conflicts(self) -> list[Conflict]:
        return self._resolver.pending()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def start(
        self,
        project_id: str,
        task_id: str,
        *,
        allocated_seconds: int | None = None,
        task_title: str | None = None,
    ) -> TimerSession:
        with self._lock:
            self._resolver.ensure_writable(self._user_id)
            self._refresh()
            previous = self._machine.session
            session = self._machine.start(
                project_id, task_id, allocated_seconds=allocated_seconds, task_title=task_title
            )
            self._commit(session, previous, create=True)
            return session

    def pause(self) -> TimerSession:
        with self._lock:
            self._resolver.ensure_writable(self._user_id)
            self._refresh()
            previous = self._machine.session
            session = self._machine.pause()
            self._commit(session, previous)
            return session

    def resume(self) -> TimerSession:
        with self._lock:
            self._resolver.ensure_writable(self._user_id)
            self._refresh()
            previous = self._machine.session
            session = self._machine.resume()
            self._commit(session, previous)
            return session

    def stop(self, notes: str | None = None, *, completed: bool = False) -> TimerSession:
        """Finalize the session, cancel ticking, and append its time log."""
        with self._lock:
            self._resolver.ensure_writable(self._user_id)
            before = self._machine.session
            self._refresh()
            previous = self._machine.session
            # The catch-up tick already ended it at the pause limit and logged it.
            if (
                before is not None
                and before.is_active
                and previous is not None
                and previous.is_terminal
            ):
                self.stop_ticking()
                return previous
            session = self._machine.stop(notes, completed=completed)
            self.stop_ticking()
            if self._commit(session, previous):
                self._finalize(session)
            return session

    def tick(self) -> TickResult:
        """Recompute from the clock; persist when the tick changed state."""
        with self._lock:
            previous = self._machine.session
            result = self._machine.tick()
            session = self._machine.session
            # A parked user_choice conflict keeps tick changes local.
            if (
                result.changed
                and session is not None
                and self._resolver.blocking(session.slot) is None
            ):
                acked = self._commit(session, previous)
                if acked and EventKind.PAUSE_LIMIT_EXCEEDED in result.events:
                    self._finalize(session)
            self._tracker.sweep()
            return result

    def resolve_conflict(self, conflict_id: str, strategy: ResolutionStrategy) -> TimerSession:
        """Settle a parked ``user_choice`` conflict and adopt the result."""
        with self._lock:
            resolution = self._resolver.resolve_pending(conflict_id, strategy)
            self._adopt(resolution.session, force=True)
            self._offline = bool(self._tracker.pending())
            return resolution.session

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def unsent(self) -> list[OptimisticEntry]:
        """Writes the store has not acknowledged yet."""
        return self._tracker.unsent()

    def restore(self, unsent: Iterable[OptimisticEntry], conflicts: Iterable[Conflict]) -> None:
        """Reload unsent writes and parked conflicts saved by an earlier process.

        Call before :meth:`connect`, which pushes or re-checks the writes.
        """
        with self._lock:
            for conflict in conflicts:
                if conflict.local.user_id != self._user_id:
                    continue
                self._resolver.restore(conflict)
                self._machine.load(conflict.local)
            for entry in unsent:
                snapshot = entry.snapshot
                if snapshot.user_id != self._user_id:
                    continue
                self._tracker.restore(snapshot.slot, snapshot, entry.inserted_at)
                self._machine.load(snapshot)
            self._offline = bool(self._tracker.pending())
            log.debug(
                "engine.restored",
                user_id=self._user_id,
                unsent=len(self._tracker.pending()),
                conflicts=len(self._resolver.pending()),
            )

    def connect(self) -> None:
        """Open the remote listener and hydrate from the store."""
        self._listener.open()
        self.reconcile()

    def disconnect(self) -> None:
        self.stop_ticking()
        self._listener.close()

    def sync(self) -> list[RemoteChange]:
        """Process one batch of remote changes."""
        changes = self._listener.poll()
        self._tracker.sweep()
        return changes

    def start_listening(self) -> None:
        """Poll the store on a background thread."""
        self._listener.start(self._sync_config.poll_interval_seconds)

    def reconcile(self) -> ReconcileReport:
        """Push offline writes and re-check local state against the store.

        Raises SyncTransportError while the store is still unreachable.
        """
        with self._lock:
            slot = self._user_id
            local = self._tracker.pending().get(slot)
            active = self._store.query_active_for_user(self._user_id)
            remote = max(active, key=lambda s: s.last_updated) if active else None
            if local is not None and remote is None:
                remote = self._store.get(local.key)

            report = ReconcileReport()
            if self._resolver.blocking(slot) is not None:
                # A parked conflict holds the slot until the user picks a side.
                if remote is not None:
                    self._listener.observe(remote)
                    self._resolver.refresh_remote(remote)
            elif local is None:
                if remote is not None:
                    self._listener.observe(remote)
                    report = ReconcileReport(adopted=self._adopt(remote))
            elif remote is None or self._fast_forward(local, remote):
                self._push(local, create=remote is None)
                report = ReconcileReport(pushed=1)
            else:
                self._listener.observe(remote)
                detection = self._detector.check(remote, now=self._clock.now())
                if detection.outcome == Outcome.CONFLICT:
                    assert detection.conflict is not None
                    resolution = self._resolver.submit(
                        detection.conflict, self._sync_config.conflict_strategy
                    )
                    if resolution is not None:
                        self._adopt(resolution.session, force=True)
                    report = ReconcileReport(conflicts=1)
                elif detection.outcome != Outcome.ECHO:
                    report = ReconcileReport(adopted=self._adopt(remote, force=True))

            self._offline = bool(self._tracker.pending())
            if not self._offline:
                self._sync_status.clear_error()
            log.debug("engine.reconciled", user_id=self._user_id, **report.model_dump())
            return report

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def start_ticking(self) -> None:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = TickScheduler(
                    self._timer_config.tick_interval_seconds, self._scheduled_tick
                )
            self._scheduler.start()

    def stop_ticking(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.cancel()

    @property
    def ticking(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _scheduled_tick(self) -> bool:
        with self._lock:
            session = self._machine.session
            if session is None or not session.is_active:
                return False
            self.tick()
            current = self._machine.session
            return current is not None and current.is_active

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _refresh(self) -> None:
        """Catch up on events missed between ticks before a mutation or read."""
        session = self._machine.session
        if session is not None and session.is_active:
            self.tick()

    def _commit(
        self, session: TimerSession, previous: TimerSession | None, *, create: bool = False
    ) -> bool:
        """Record and write *session*; returns True once the store acknowledged it."""
        slot = session.slot
        optimistic = self._sync_config.enable_optimistic_updates
        if optimistic:
            self._tracker.apply(slot, session)
        else:
            self._tracker.remember(session.idempotency_key)
        try:
            if create:
                self._store.create(session)
            else:
                self._store.update(session)
        except AlreadyActive:
            self._tracker.rollback(slot)
            self._machine.load(previous)
            raise
        except SyncTransportError as exc:
            if not optimistic:
                self._machine.load(previous)
                raise
            self._offline = True
            self._sync_status.mark_error(exc.message)
            log.warning("engine.offline_write", key=str(session.key), error=exc.message)
            return False

        self._tracker.acknowledge(slot, session.idempotency_key)
        return True

    def _push(self, session: TimerSession, *, create: bool) -> None:
        if create:
            self._store.create(session)
        else:
            self._store.update(session)
        self._tracker.acknowledge(session.slot, session.idempotency_key)
        if session.is_terminal:
            self._finalize(session)

    def _finalize(self, session: TimerSession) -> None:
        """Terminal bookkeeping: drop the optimistic entry and append the log."""
        self._tracker.clear(session.slot)
        try:
            self._store.append_log(session)
        except SyncTransportError as exc:
            self._sync_status.mark_error(exc.message)
            log.warning("engine.log_append_failed", key=str(session.key), error=exc.message)

    def _fast_forward(self, local: TimerSession, remote: TimerSession) -> bool:
        """Whether *remote* is an older write of ours that *local* simply extends."""
        if remote.key != local.key:
            return False
        if self._tracker.is_own(remote.idempotency_key):
            return True
        if remote.is_terminal and local.last_updated > remote.last_updated:
            return True
        return remote.device_id == self._device_id and remote.sync_version < local.sync_version

    def _adopt(self, remote: TimerSession, *, force: bool = False) -> bool:
        """Make *remote* the machine state when it is newer or supersedes ours."""
        current = self._machine.session
        if not force and current is not None:
            same_key = current.key == remote.key
            if same_key and remote.last_updated <= current.last_updated:
                return False
            if not same_key and current.is_active and not remote.is_active:
                return False
        self._machine.load(remote)
        if not remote.is_active:
            self.stop_ticking()
        self.events.publish(
            TimerEvent(
                kind=EventKind.REMOTE_APPLIED,
                key=remote.key,
                at=self._clock.now(),
                data={"status": str(remote.status), "device_id": remote.device_id},
            )
        )
        return True

    def _on_remote_change(self, change: RemoteChange) -> None:
        remote = change.snapshot
        if remote.user_id != self._user_id:
            return
        with self._lock:
            if self._resolver.refresh_remote(remote) or self._resolver.blocking(remote.slot):
                return

            if change.type == ChangeType.REMOVED:
                current = self._machine.session
                if current is not None and current.key == remote.key:
                    self._tracker.clear(remote.slot)
                    self._machine.load(None)
                    self.stop_ticking()
                return

            detection = self._detector.check(remote, now=self._clock.now())
            if detection.outcome == Outcome.ECHO:
                return
            if detection.outcome == Outcome.CONFLICT:
                assert detection.conflict is not None
                resolution = self._resolver.submit(
                    detection.conflict, self._sync_config.conflict_strategy
                )
                if resolution is not None:
                    self._adopt(resolution.session, force=True)
                return
            self._adopt(remote, force=detection.outcome == Outcome.ACCEPTED)
            if remote.stop_reason == StopReason.SUPERSEDED:
                log.info("engine.superseded", key=str(remote.key), device_id=remote.device_id)

    def _on_reconnect(self) -> None:
        try:
            self.reconcile()
        except SyncTransportError as exc:
            self._sync_status.mark_error(exc.message)
            log.warning("engine.reconcile_failed", user_id=self._user_id, error=exc.message)
