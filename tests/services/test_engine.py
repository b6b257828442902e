"""Tests for TimerEngine — optimistic writes, sync, and conflicts across devices."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import pytest

from tmrctl.config.models import SyncConfig, TimerConfig
from tmrctl.domain.clock import ManualClock
from tmrctl.domain.conflicts import ResolutionStrategy
from tmrctl.domain.errors import AlreadyActive, ConflictUnresolved, SyncTransportError
from tmrctl.domain.events import EventKind, TimerEvent
from tmrctl.domain.lifecycle import StopReason, TimerStatus
from tmrctl.domain.session import SessionKey, TimerSession
from tmrctl.infrastructure.store import SqlSessionStore
from tmrctl.services.engine import TimerEngine
from tmrctl.services.sync_status import SyncStatus

EngineFactory = Callable[..., TimerEngine]


class OutageStore:
    """Delegates to a real store; every call fails while ``down`` is set."""

    def __init__(self, inner: SqlSessionStore) -> None:
        self._inner = inner
        self.down = False

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def call(*args: Any, **kwargs: Any) -> Any:
            if self.down:
                raise SyncTransportError("Session store unavailable: disk I/O error")
            return attr(*args, **kwargs)

        return call


def record(engine: TimerEngine) -> list[TimerEvent]:
    events: list[TimerEvent] = []
    engine.events.subscribe(events.append)
    return events


@pytest.fixture
def outage(store: SqlSessionStore) -> OutageStore:
    return OutageStore(store)


class TestLocalMutations:
    def test_start_is_written_and_acknowledged(
        self, make_engine: EngineFactory, store: SqlSessionStore
    ) -> None:
        engine = make_engine()
        session = engine.start("web", "T-1", allocated_seconds=3600, task_title="Login")
        assert store.get(session.key) == session
        assert engine.tracker.pending() == {}
        assert engine.tracker.get("alice") == session
        assert engine.offline is False

    def test_full_lifecycle_appends_one_log(
        self, make_engine: EngineFactory, store: SqlSessionStore, clock: ManualClock
    ) -> None:
        engine = make_engine()
        engine.start("web", "T-1")
        clock.advance(60)
        engine.pause()
        clock.advance(20)
        engine.resume()
        clock.advance(40)
        stopped = engine.stop("done")

        assert store.get(stopped.key) == stopped
        assert store.query_active_for_user("alice") == []
        assert "alice" not in engine.tracker
        logs = store.list_logs("alice")
        assert len(logs) == 1
        assert logs[0].running_seconds == 100
        assert logs[0].paused_seconds == 20
        assert logs[0].notes == "done"

    def test_projection_reflects_elapsed_time(
        self, make_engine: EngineFactory, clock: ManualClock
    ) -> None:
        engine = make_engine()
        engine.start("web", "T-1", allocated_seconds=3600)
        clock.advance(1500)
        projection = engine.projection()
        assert projection.status == TimerStatus.RUNNING
        assert projection.time_remaining == 2100

    def test_second_active_session_rolls_back(
        self, make_engine: EngineFactory, store: SqlSessionStore
    ) -> None:
        laptop = make_engine(device_id="laptop")
        desktop = make_engine(device_id="desktop")
        desktop.start("web", "X")

        with pytest.raises(AlreadyActive):
            laptop.start("web", "Y")

        assert laptop.session is None
        assert len(laptop.tracker) == 0
        assert [s.task_id for s in store.query_active_for_user("alice")] == ["X"]

    def test_start_over_remote_running_same_task_is_rejected(
        self, make_engine: EngineFactory, store: SqlSessionStore, clock: ManualClock
    ) -> None:
        desktop = make_engine(device_id="desktop")
        original = desktop.start("web", "T-1")
        laptop = make_engine(device_id="laptop", connect=False)
        clock.advance(600)

        with pytest.raises(AlreadyActive):
            laptop.start("web", "T-1")

        assert laptop.session is None
        assert len(laptop.tracker) == 0
        stored = store.get(original.key)
        assert stored == original
        assert stored is not None
        assert stored.device_id == "desktop"

    def test_pause_limit_tick_finalizes(
        self, make_engine: EngineFactory, store: SqlSessionStore, clock: ManualClock
    ) -> None:
        engine = make_engine()
        events = record(engine)
        engine.start("web", "T-1")
        engine.pause()
        clock.advance(180)

        result = engine.tick()

        assert result.status == TimerStatus.STOPPED
        stored = store.get(SessionKey(user_id="alice", project_id="web", task_id="T-1"))
        assert stored is not None
        assert stored.stop_reason == StopReason.PAUSE_LIMIT
        assert [entry.stop_reason for entry in store.list_logs("alice")] == [StopReason.PAUSE_LIMIT]
        assert [e.kind for e in events].count(EventKind.PAUSE_LIMIT_EXCEEDED) == 1
        assert "alice" not in engine.tracker

    def test_stop_after_pause_limit_returns_the_finished_session(
        self, make_engine: EngineFactory, store: SqlSessionStore, clock: ManualClock
    ) -> None:
        engine = make_engine()
        engine.start("web", "T-1")
        engine.pause()
        clock.advance(180)

        result = engine.stop("wrapped up")

        assert result.status == TimerStatus.STOPPED
        assert result.stop_reason == StopReason.PAUSE_LIMIT
        assert engine.ticking is False
        assert [entry.stop_reason for entry in store.list_logs("alice")] == [StopReason.PAUSE_LIMIT]

    def test_overtime_keeps_running_until_stop(
        self, make_engine: EngineFactory, store: SqlSessionStore, clock: ManualClock
    ) -> None:
        engine = make_engine()
        engine.start("web", "T-1", allocated_seconds=1800)
        clock.advance(1900)
        projection = engine.projection()
        assert projection.status == TimerStatus.RUNNING
        assert projection.time_remaining == -100
        stored = store.get(SessionKey(user_id="alice", project_id="web", task_id="T-1"))
        assert stored is not None
        assert stored.allocation_exceeded is True


class TestOffline:
    def test_offline_write_is_kept_and_pushed_on_reconcile(
        self, make_engine: EngineFactory, outage: OutageStore, store: SqlSessionStore
    ) -> None:
        engine = make_engine(store=outage)
        statuses: list[SyncStatus] = []
        engine.subscribe_status(statuses.append)

        outage.down = True
        session = engine.start("web", "T-1")

        assert engine.offline is True
        assert engine.session == session
        assert engine.tracker.pending() == {"alice": session}
        assert statuses[-1].sync_error is not None

        outage.down = False
        report = engine.reconcile()

        assert report.pushed == 1
        assert engine.offline is False
        assert store.get(session.key) == session
        assert engine.sync_status.sync_error is None

    def test_unsent_write_restored_into_a_new_engine_is_pushed(
        self, make_engine: EngineFactory, outage: OutageStore, store: SqlSessionStore
    ) -> None:
        first = make_engine(store=outage)
        outage.down = True
        session = first.start("web", "T-1")
        unsent = first.unsent()
        first.disconnect()
        outage.down = False

        second = make_engine(connect=False)
        second.restore(unsent, [])
        assert second.offline is True
        second.connect()

        assert [entry.snapshot for entry in unsent] == [session]
        assert store.get(session.key) == session
        assert second.session == session
        assert second.offline is False

    def test_reconcile_while_down_raises(
        self, make_engine: EngineFactory, outage: OutageStore
    ) -> None:
        engine = make_engine(store=outage)
        outage.down = True
        engine.start("web", "T-1")
        with pytest.raises(SyncTransportError):
            engine.reconcile()
        assert engine.offline is True

    def test_offline_stop_is_logged_once_pushed(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        store: SqlSessionStore,
        clock: ManualClock,
    ) -> None:
        engine = make_engine(store=outage)
        engine.start("web", "T-1")
        clock.advance(30)
        outage.down = True
        stopped = engine.stop()
        assert store.list_logs("alice") == []

        outage.down = False
        report = engine.reconcile()

        assert report.pushed == 1
        assert store.get(stopped.key) == stopped
        assert len(store.list_logs("alice")) == 1

    def test_without_optimistic_updates_failure_reverts(
        self, make_engine: EngineFactory, outage: OutageStore
    ) -> None:
        engine = make_engine(
            store=outage, sync_config=SyncConfig(enable_optimistic_updates=False)
        )
        outage.down = True
        with pytest.raises(SyncTransportError):
            engine.start("web", "T-1")
        assert engine.session is None
        assert engine.offline is False


class TestRemoteChanges:
    def test_connect_hydrates_from_store(self, make_engine: EngineFactory) -> None:
        desktop = make_engine(device_id="desktop")
        started = desktop.start("web", "T-1")
        laptop = make_engine(device_id="laptop")
        assert laptop.session == started

    def test_own_writes_are_echoes(self, make_engine: EngineFactory) -> None:
        engine = make_engine()
        events = record(engine)
        session = engine.start("web", "T-1")
        engine.pause()
        engine.sync()
        assert EventKind.REMOTE_APPLIED not in [e.kind for e in events]
        assert engine.session is not None
        assert engine.session.status == TimerStatus.PAUSED
        assert engine.session.key == session.key

    def test_remote_pause_is_applied(
        self, make_engine: EngineFactory, clock: ManualClock
    ) -> None:
        laptop = make_engine(device_id="laptop")
        laptop.start("web", "T-1")
        clock.advance(11)
        desktop = make_engine(device_id="desktop")
        desktop.pause()

        laptop.sync()

        assert laptop.session == desktop.session
        assert laptop.session is not None
        assert laptop.session.status == TimerStatus.PAUSED

    def test_remote_removal_clears_local_timer(
        self, make_engine: EngineFactory, store: SqlSessionStore
    ) -> None:
        engine = make_engine()
        session = engine.start("web", "T-1")
        store.delete(session.key)
        engine.sync()
        assert engine.session is None


class TestConflicts:
    def _race(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        clock: ManualClock,
        strategy: ResolutionStrategy,
    ) -> tuple[TimerEngine, TimerEngine, TimerSession]:
        """Laptop starts X while offline; desktop starts Y; laptop comes back."""
        laptop = make_engine(
            device_id="laptop", store=outage, sync_config=SyncConfig(conflict_strategy=strategy)
        )
        desktop = make_engine(device_id="desktop")
        outage.down = True
        laptop.start("web", "X")
        clock.advance(1)
        remote = desktop.start("web", "Y")
        outage.down = False
        return laptop, desktop, remote

    def test_local_wins_keeps_laptop_session(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        store: SqlSessionStore,
        clock: ManualClock,
    ) -> None:
        laptop, desktop, remote = self._race(
            make_engine, outage, clock, ResolutionStrategy.LOCAL_WINS
        )
        events = record(laptop)

        report = laptop.reconcile()

        assert report.conflicts == 1
        kinds = [e.kind for e in events]
        assert EventKind.CONFLICT_DETECTED in kinds
        assert EventKind.CONFLICT_RESOLVED in kinds
        detected = next(e for e in events if e.kind == EventKind.CONFLICT_DETECTED)
        assert detected.data["conflict_type"] == "different_timer"

        active = store.query_active_for_user("alice")
        assert [(s.task_id, s.device_id) for s in active] == [("X", "laptop")]
        assert laptop.session == active[0]
        superseded = store.get(remote.key)
        assert superseded is not None
        assert superseded.stop_reason == StopReason.SUPERSEDED
        assert laptop.offline is False
        assert laptop.sync_status.conflict_detected is False

        desktop.sync()
        assert desktop.session is not None
        assert desktop.session.task_id == "X"

    def test_server_wins_adopts_desktop_session(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        store: SqlSessionStore,
        clock: ManualClock,
    ) -> None:
        laptop, _desktop, remote = self._race(
            make_engine, outage, clock, ResolutionStrategy.SERVER_WINS
        )
        laptop.reconcile()
        assert laptop.session == remote
        assert store.query_active_for_user("alice") == [remote]
        assert laptop.tracker.pending() == {}

    def test_user_choice_blocks_until_resolved(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        clock: ManualClock,
    ) -> None:
        laptop, _desktop, remote = self._race(
            make_engine, outage, clock, ResolutionStrategy.USER_CHOICE
        )
        laptop.reconcile()

        conflicts = laptop.pending_conflicts()
        assert len(conflicts) == 1
        assert laptop.sync_status.conflict_detected is True
        with pytest.raises(ConflictUnresolved):
            laptop.pause()

        resolved = laptop.resolve_conflict(conflicts[0].id, ResolutionStrategy.SERVER_WINS)

        assert resolved == remote
        assert laptop.session == remote
        assert laptop.pending_conflicts() == []
        paused = laptop.pause()
        assert paused.status == TimerStatus.PAUSED

    def test_parked_conflict_restored_into_a_new_engine(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        store: SqlSessionStore,
        clock: ManualClock,
    ) -> None:
        laptop, _desktop, remote = self._race(
            make_engine, outage, clock, ResolutionStrategy.USER_CHOICE
        )
        laptop.reconcile()
        unsent, conflicts = laptop.unsent(), laptop.pending_conflicts()
        laptop.disconnect()

        fresh = make_engine(
            device_id="laptop",
            connect=False,
            sync_config=SyncConfig(conflict_strategy=ResolutionStrategy.USER_CHOICE),
        )
        fresh.restore(unsent, conflicts)
        fresh.connect()

        assert [c.id for c in fresh.pending_conflicts()] == [conflicts[0].id]
        with pytest.raises(ConflictUnresolved):
            fresh.pause()

        fresh.resolve_conflict(conflicts[0].id, ResolutionStrategy.LOCAL_WINS)

        active = store.query_active_for_user("alice")
        assert [(s.task_id, s.device_id) for s in active] == [("X", "laptop")]
        superseded = store.get(remote.key)
        assert superseded is not None
        assert superseded.stop_reason == StopReason.SUPERSEDED
        assert fresh.offline is False

    def test_stale_write_after_own_echo_is_state_mismatch(
        self,
        make_engine: EngineFactory,
        clock: ManualClock,
    ) -> None:
        laptop = make_engine(device_id="laptop")
        laptop.start("web", "T-1", allocated_seconds=5)
        desktop = make_engine(device_id="desktop")
        clock.advance(1)
        paused = laptop.pause()
        laptop.sync()
        assert laptop.tracker.get("alice") == paused

        clock.advance(5)
        desktop.tick()
        events = record(laptop)
        laptop.sync()

        detected = [e for e in events if e.kind == EventKind.CONFLICT_DETECTED]
        assert len(detected) == 1
        assert detected[0].data["conflict_type"] == "state_mismatch"
        assert laptop.session == desktop.session
        assert laptop.session is not None
        assert laptop.session.status == TimerStatus.RUNNING

    def test_offline_pause_against_newer_remote_write(
        self,
        make_engine: EngineFactory,
        outage: OutageStore,
        clock: ManualClock,
    ) -> None:
        laptop = make_engine(device_id="laptop", store=outage)
        laptop.start("web", "T-1", allocated_seconds=5)
        desktop = make_engine(device_id="desktop")
        clock.advance(1)
        outage.down = True
        laptop.pause()
        clock.advance(5)
        desktop.tick()
        outage.down = False
        events = record(laptop)

        report = laptop.reconcile()

        assert report.conflicts == 1
        detected = next(e for e in events if e.kind == EventKind.CONFLICT_DETECTED)
        assert detected.data["conflict_type"] == "state_mismatch"
        assert laptop.session == desktop.session
        assert laptop.session is not None
        assert laptop.session.status == TimerStatus.RUNNING
        assert laptop.offline is False


class TestTicking:
    def test_start_and_stop_ticking(self, make_engine: EngineFactory) -> None:
        engine = make_engine(timer_config=TimerConfig(tick_interval_seconds=0.01))
        engine.start("web", "T-1")
        engine.start_ticking()
        assert engine.ticking
        engine.stop()
        assert not engine.ticking

    def test_background_listener_applies_remote_start(self, make_engine: EngineFactory) -> None:
        laptop = make_engine()
        desktop = make_engine(
            device_id="desktop", sync_config=SyncConfig(poll_interval_seconds=0.01)
        )
        applied = threading.Event()
        desktop.events.subscribe(
            lambda event: applied.set() if event.kind == EventKind.REMOTE_APPLIED else None
        )
        desktop.start_listening()

        laptop.start("web", "T-1")

        assert applied.wait(timeout=5)
        assert desktop.session is not None
        assert desktop.session.key == SessionKey(user_id="alice", project_id="web", task_id="T-1")
