"""Tests for SqlSessionStore and its change feed."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.engine import Engine

from tests.conftest import T0, make_session
from tmrctl.domain.errors import AlreadyActive, SyncTransportError
from tmrctl.domain.lifecycle import StopReason, TimerStatus
from tmrctl.domain.ports import ChangeType
from tmrctl.domain.session import TimerSession
from tmrctl.infrastructure.store import SqlSessionStore


def stopped(**fields: Any) -> TimerSession:
    end = fields.pop("end_time", T0 + timedelta(seconds=600))
    return make_session(
        status=TimerStatus.STOPPED,
        end_time=end,
        stop_reason=StopReason.STOPPED,
        **fields,
    )


class TestSessions:
    def test_create_and_get(self, store: SqlSessionStore) -> None:
        session = make_session(task_title="Login", allocated_seconds=900)
        store.create(session)
        assert store.get(session.key) == session

    def test_get_missing(self, store: SqlSessionStore) -> None:
        assert store.get(make_session().key) is None

    def test_update_overwrites(self, store: SqlSessionStore) -> None:
        session = make_session()
        store.create(session)
        paused = session.evolve(
            status=TimerStatus.PAUSED, paused_at=T0 + timedelta(seconds=5), sync_version=2
        )
        store.update(paused)
        assert store.get(session.key) == paused

    def test_single_active_session_per_user(self, store: SqlSessionStore) -> None:
        store.create(make_session(task_id="X"))
        with pytest.raises(AlreadyActive):
            store.create(make_session(task_id="Y"))
        store.create(make_session(user_id="bob", task_id="Y"))

    def test_create_over_running_session_same_key(self, store: SqlSessionStore) -> None:
        original = make_session(device_id="desktop")
        store.create(original)
        subscription = store.subscribe("alice")
        with pytest.raises(AlreadyActive):
            store.create(make_session(start_time=T0 + timedelta(seconds=600)))
        assert store.get(original.key) == original
        assert subscription.poll() == []

    def test_create_replaces_finished_session_same_key(self, store: SqlSessionStore) -> None:
        store.create(stopped())
        subscription = store.subscribe("alice")
        restarted = make_session(start_time=T0 + timedelta(seconds=900))
        store.create(restarted)
        assert store.get(restarted.key) == restarted
        assert [c.type for c in subscription.poll()] == [ChangeType.MODIFIED]

    def test_stopped_session_frees_the_slot(self, store: SqlSessionStore) -> None:
        store.create(stopped(task_id="X"))
        store.create(make_session(task_id="Y"))
        active = store.query_active_for_user("alice")
        assert [s.task_id for s in active] == ["Y"]

    def test_delete(self, store: SqlSessionStore) -> None:
        session = make_session()
        store.create(session)
        store.delete(session.key)
        store.delete(session.key)
        assert store.get(session.key) is None

    def test_operational_error_becomes_transport_error(
        self, store: SqlSessionStore, db_engine: Engine
    ) -> None:
        with db_engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE timer_sessions")
        with pytest.raises(SyncTransportError):
            store.get(make_session().key)


class TestChangeFeed:
    def test_subscription_sees_changes_in_order(self, store: SqlSessionStore) -> None:
        store.create(make_session(task_id="before"))
        store.update(stopped(task_id="before"))
        subscription = store.subscribe("alice")

        session = make_session()
        store.create(session)
        store.update(session.evolve(sync_version=2))
        store.delete(session.key)
        store.create(make_session(user_id="bob"))

        changes = subscription.poll()
        assert [c.type for c in changes] == [
            ChangeType.ADDED,
            ChangeType.MODIFIED,
            ChangeType.REMOVED,
        ]
        assert changes[-1].snapshot.sync_version == 2
        assert [c.sequence for c in changes] == sorted(c.sequence for c in changes)
        assert subscription.poll() == []

    def test_closed_subscription_raises(self, store: SqlSessionStore) -> None:
        subscription = store.subscribe("alice")
        subscription.close()
        with pytest.raises(SyncTransportError):
            subscription.poll()


class TestTimeLogs:
    def test_append_is_idempotent(self, store: SqlSessionStore) -> None:
        session = stopped(notes="wrap-up", pause_count=1, total_paused_seconds=60.0)
        store.append_log(session)
        store.append_log(session)
        logs = store.list_logs("alice")
        assert len(logs) == 1
        assert logs[0].running_seconds == 540
        assert logs[0].notes == "wrap-up"

    def test_newest_first_with_limit(self, store: SqlSessionStore) -> None:
        for minutes in (10, 30, 20):
            store.append_log(
                stopped(task_id=f"T-{minutes}", end_time=T0 + timedelta(minutes=minutes))
            )
        logs = store.list_logs("alice", limit=2)
        assert [entry.task_id for entry in logs] == ["T-30", "T-20"]

    def test_active_session_cannot_be_logged(self, store: SqlSessionStore) -> None:
        with pytest.raises(ValueError):
            store.append_log(make_session())
