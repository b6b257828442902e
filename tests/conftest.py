"""Shared pytest fixtures and test helpers for tmrctl tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from tmrctl.config.models import SyncConfig, TimerConfig
from tmrctl.domain.clock import ManualClock
from tmrctl.domain.lifecycle import TimerStatus
from tmrctl.domain.machine import new_idempotency_key
from tmrctl.domain.session import TimerSession
from tmrctl.infrastructure.database.engine import init_database
from tmrctl.infrastructure.store import SqlSessionStore
from tmrctl.services.engine import TimerEngine

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def clock() -> ManualClock:
    """A clock frozen at 09:00 UTC that only moves when advanced."""
    return ManualClock(T0)


@pytest.fixture
def db_engine(tmp_path: Path) -> Iterator[Engine]:
    """Initialized SQLite engine with all tables created."""
    engine = init_database(tmp_path / ".tmrctl")
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def store(db_engine: Engine, clock: ManualClock) -> SqlSessionStore:
    return SqlSessionStore(db_engine, clock=clock)


@pytest.fixture
def make_engine(
    store: SqlSessionStore, clock: ManualClock
) -> Iterator[Callable[..., TimerEngine]]:
    """Factory for connected engines sharing one store and clock.

    Backoff sleeps are no-ops; every engine is disconnected on teardown.
    """
    created: list[TimerEngine] = []

    def _make(
        user_id: str = "alice",
        device_id: str = "laptop",
        *,
        connect: bool = True,
        **kwargs: Any,
    ) -> TimerEngine:
        kwargs.setdefault("store", store)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("timer_config", TimerConfig())
        kwargs.setdefault("sync_config", SyncConfig())
        kwargs.setdefault("sleep", lambda _delay: None)
        engine = TimerEngine(user_id, device_id=device_id, **kwargs)
        created.append(engine)
        if connect:
            engine.connect()
        return engine

    yield _make
    for engine in created:
        engine.disconnect()


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Temporary workspace with a ``tmrctl.toml`` for user alice on a laptop."""
    (tmp_path / "tmrctl.toml").write_text(
        '[user]\nid = "alice"\ndevice_id = "laptop"\n', encoding="utf-8"
    )
    return tmp_path


@pytest.fixture
def _isolated_workspace(workspace_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp workspace so the CLI creates an isolated database.

    Use via ``@pytest.mark.usefixtures("_isolated_workspace")`` on command
    test classes.
    """
    monkeypatch.delenv("TMRCTL_CONFIG", raising=False)
    monkeypatch.delenv("TMRCTL_USER_ID", raising=False)
    monkeypatch.chdir(workspace_root)


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def make_session(
    *,
    user_id: str = "alice",
    project_id: str = "web",
    task_id: str = "T-1",
    status: TimerStatus = TimerStatus.RUNNING,
    start_time: datetime = T0,
    last_updated: datetime | None = None,
    device_id: str = "laptop",
    sync_version: int = 1,
    **fields: Any,
) -> TimerSession:
    """Build a snapshot directly, bypassing the state machine."""
    if status == TimerStatus.PAUSED:
        fields.setdefault("paused_at", last_updated or start_time)
        fields.setdefault("pause_count", 1)
    return TimerSession(
        user_id=user_id,
        project_id=project_id,
        task_id=task_id,
        status=status,
        start_time=start_time,
        last_updated=last_updated or start_time,
        device_id=device_id,
        idempotency_key=fields.pop("idempotency_key", new_idempotency_key()),
        sync_version=sync_version,
        **fields,
    )
