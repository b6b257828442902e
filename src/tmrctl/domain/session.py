"""TimerSession — the aggregate root, as an immutable snapshot.

Every mutation produces a new snapshot via :meth:`TimerSession.evolve`.
Derived values (elapsed, remaining, pause used) are always recomputed
from absolute timestamps, never from a tick counter, so missed ticks
cannot introduce drift.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tmrctl.domain.clock import seconds_between
from tmrctl.domain.lifecycle import StopReason, TimerStatus, is_active, is_terminal


class SessionKey(BaseModel):
    """Composite identity ``(user_id, project_id, task_id)``."""

    model_config = {"frozen": True}

    user_id: str
    project_id: str
    task_id: str

    def __str__(self) -> str:
        return f"{self.user_id}/{self.project_id}/{self.task_id}"


class PauseInterval(BaseModel):
    """One pause; ``resumed_at`` is None while the pause is open."""

    model_config = {"frozen": True}

    paused_at: datetime
    resumed_at: datetime | None = None


class TimerSession(BaseModel):
    """One logical timer run for a user against one task.

    Attributes:
        allocated_seconds: Budget to count down from. None means
            elapsed-only mode (``time_remaining`` is ``-elapsed``).
        total_paused_seconds: Sum of closed pause intervals.
        pause_time_used_seconds: Pause budget consumed, including the
            open pause as of the last write.
        last_updated: Strictly increasing per writer; the transport-level
            ordering key.
        idempotency_key: Tags the mutation that produced this version.
    """

    model_config = {"frozen": True}

    user_id: str
    project_id: str
    task_id: str
    task_title: str | None = None
    status: TimerStatus = TimerStatus.IDLE
    start_time: datetime | None = None
    end_time: datetime | None = None
    allocated_seconds: int | None = None
    pause_count: int = Field(default=0, ge=0)
    pause_time_used_seconds: int = Field(default=0, ge=0)
    total_paused_seconds: float = Field(default=0.0, ge=0)
    paused_at: datetime | None = None
    pause_warning_shown: bool = False
    allocation_exceeded: bool = False
    pause_history: tuple[PauseInterval, ...] = ()
    stop_reason: StopReason | None = None
    notes: str | None = None
    last_updated: datetime
    device_id: str
    idempotency_key: str
    sync_version: int = 1

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def key(self) -> SessionKey:
        return SessionKey(user_id=self.user_id, project_id=self.project_id, task_id=self.task_id)

    @property
    def slot(self) -> str:
        """The user's single active-timer slot."""
        return self.user_id

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        return self.status == TimerStatus.PAUSED

    @property
    def is_active(self) -> bool:
        return is_active(self.status)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    # ------------------------------------------------------------------
    # Derived time values
    # ------------------------------------------------------------------

    def _reference(self, now: datetime) -> datetime:
        """Terminal sessions are frozen at their end time."""
        if self.is_terminal and self.end_time is not None:
            return self.end_time
        return now

    def current_pause_seconds(self, now: datetime) -> float:
        if self.paused_at is None:
            return 0.0
        return max(0.0, seconds_between(self.paused_at, self._reference(now)))

    def paused_total_seconds(self, now: datetime) -> float:
        return self.total_paused_seconds + self.current_pause_seconds(now)

    def elapsed_running_seconds(self, now: datetime) -> float:
        if self.start_time is None:
            return 0.0
        ref = self._reference(now)
        wall = seconds_between(self.start_time, ref)
        return max(0.0, wall - self.paused_total_seconds(ref))

    def time_remaining(self, now: datetime) -> float:
        """Seconds left on the allocation; negative means overtime."""
        elapsed = self.elapsed_running_seconds(now)
        if self.allocated_seconds is None:
            return -elapsed
        return self.allocated_seconds - elapsed

    def pause_time_used(self, now: datetime) -> int:
        return int(self.paused_total_seconds(now))

    # ------------------------------------------------------------------
    # Snapshot evolution / serialization
    # ------------------------------------------------------------------

    def evolve(self, **changes: Any) -> TimerSession:
        """Return a validated copy with *changes* applied."""
        data = self.model_dump()
        data.update(changes)
        return TimerSession.model_validate(data)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TimerSession:
        return cls.model_validate(payload)


class TimeLog(BaseModel):
    """Append-only record of a finished session."""

    model_config = {"frozen": True}

    user_id: str
    project_id: str
    task_id: str
    task_title: str | None = None
    start_time: datetime
    end_time: datetime
    running_seconds: float
    paused_seconds: float
    pause_count: int
    stop_reason: StopReason
    notes: str | None = None
    device_id: str
    idempotency_key: str

    @classmethod
    def from_session(cls, session: TimerSession) -> TimeLog:
        if not session.is_terminal or session.start_time is None or session.end_time is None:
            msg = f"Session {session.key} is not finished"
            raise ValueError(msg)
        end = session.end_time
        return cls(
            user_id=session.user_id,
            project_id=session.project_id,
            task_id=session.task_id,
            task_title=session.task_title,
            start_time=session.start_time,
            end_time=end,
            running_seconds=session.elapsed_running_seconds(end),
            paused_seconds=session.paused_total_seconds(end),
            pause_count=session.pause_count,
            stop_reason=session.stop_reason or StopReason.STOPPED,
            notes=session.notes,
            device_id=session.device_id,
            idempotency_key=session.idempotency_key,
        )


def format_duration(seconds: float) -> str:
    """Render seconds as ``H:MM:SS``; negative values (overtime) get a ``-``.

    Examples:
        >>> format_duration(3725)
        '1:02:05'
        >>> format_duration(-61)
        '-0:01:01'
    """
    sign = "-" if seconds < 0 else ""
    total = int(abs(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{sign}{hours}:{minutes:02d}:{secs:02d}"
