"""Conflict taxonomy, detection, and the field-wise merge.

A conflict is a mismatch between a pending optimistic snapshot (local)
and an incoming remote snapshot for the same user's timer slot. The
taxonomy is fixed and checked in order:

1. ``different_timer`` — the two snapshots are for different tasks.
2. ``state_mismatch`` — one is paused and the other is not.
3. ``time_drift`` — start times differ by more than the drift window.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from tmrctl.domain.lifecycle import TimerStatus
from tmrctl.domain.session import TimerSession

log = structlog.get_logger(__name__)

DEFAULT_MAX_DRIFT_MS = 5000


class ConflictType(StrEnum):
    DIFFERENT_TIMER = "different_timer"
    STATE_MISMATCH = "state_mismatch"
    TIME_DRIFT = "time_drift"


class ResolutionStrategy(StrEnum):
    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    USER_CHOICE = "user_choice"
    MERGE = "merge"


class Conflict(BaseModel):
    """Transient record handed from the detector to the resolver."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    local: TimerSession
    remote: TimerSession
    conflict_type: ConflictType
    detected_at: datetime

    @property
    def slot(self) -> str:
        return self.local.slot


def detect_conflict(
    local: TimerSession,
    remote: TimerSession,
    *,
    now: datetime,
    max_drift_ms: int = DEFAULT_MAX_DRIFT_MS,
) -> Conflict | None:
    """Classify the mismatch between *local* and *remote*, or None."""
    conflict_type: ConflictType | None = None
    if local.project_id != remote.project_id or local.task_id != remote.task_id:
        conflict_type = ConflictType.DIFFERENT_TIMER
    elif local.is_paused != remote.is_paused:
        conflict_type = ConflictType.STATE_MISMATCH
    elif _drift_ms(local, remote) > max_drift_ms:
        conflict_type = ConflictType.TIME_DRIFT

    if conflict_type is None:
        return None
    return Conflict(local=local, remote=remote, conflict_type=conflict_type, detected_at=now)


def _drift_ms(local: TimerSession, remote: TimerSession) -> float:
    if local.start_time is None or remote.start_time is None:
        return 0.0
    return abs((local.start_time - remote.start_time).total_seconds()) * 1000


def merge_sessions(local: TimerSession, remote: TimerSession) -> TimerSession:
    """Field-wise merge with remote as the base.

    - ``start_time``: the later one (the most recent explicit restart).
    - ``total_paused_seconds``: the larger one.
    - pause state (``status``/``paused_at``): remote's, as it is
      authoritative for the live pause.
    - ``pause_warning_shown``: either side.

    Deterministic: merging the same pair twice gives equal results.
    """
    start_time = _later(local.start_time, remote.start_time)
    total_paused = max(local.total_paused_seconds, remote.total_paused_seconds)
    return remote.evolve(
        start_time=start_time,
        total_paused_seconds=total_paused,
        pause_time_used_seconds=max(remote.pause_time_used_seconds, int(total_paused)),
        status=remote.status,
        paused_at=remote.paused_at if remote.status == TimerStatus.PAUSED else None,
        pause_warning_shown=local.pause_warning_shown or remote.pause_warning_shown,
        last_updated=max(local.last_updated, remote.last_updated),
        sync_version=max(local.sync_version, remote.sync_version),
    )


def _later(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class PendingSnapshots(Protocol):
    """What the detector needs from the optimistic tracker."""

    def get(self, slot: str) -> TimerSession | None: ...

    def clear(self, slot: str) -> None: ...

    def is_own(self, idempotency_key: str) -> bool: ...


class Outcome(StrEnum):
    APPLY = "apply"  # no pending local write; remote is the only writer
    ECHO = "echo"  # our own write coming back
    ACCEPTED = "accepted"  # pending write agrees with remote
    CONFLICT = "conflict"


class Detection(BaseModel):
    model_config = {"frozen": True}

    outcome: Outcome
    conflict: Conflict | None = None


class ConflictDetector:
    """Checks each incoming remote snapshot against the pending local one."""

    def __init__(self, pending: PendingSnapshots, *, max_drift_ms: int = DEFAULT_MAX_DRIFT_MS) -> None:
        self._pending = pending
        self._max_drift_ms = max_drift_ms

    def check(self, remote: TimerSession, *, now: datetime) -> Detection:
        local = self._pending.get(remote.slot)
        # The entry outlives its own echo so a stale write from another device
        # inside the expiry window is still compared against it.
        if local is not None and local.idempotency_key == remote.idempotency_key:
            return Detection(outcome=Outcome.ECHO)

        # An older write of ours arriving after a newer local mutation.
        if self._pending.is_own(remote.idempotency_key):
            return Detection(outcome=Outcome.ECHO)

        if local is None:
            return Detection(outcome=Outcome.APPLY)

        conflict = detect_conflict(local, remote, now=now, max_drift_ms=self._max_drift_ms)
        if conflict is None:
            self._pending.clear(remote.slot)
            return Detection(outcome=Outcome.ACCEPTED)

        log.info(
            "conflict.detected",
            slot=remote.slot,
            conflict_type=str(conflict.conflict_type),
            local_key=str(local.key),
            remote_key=str(remote.key),
        )
        return Detection(outcome=Outcome.CONFLICT, conflict=conflict)
