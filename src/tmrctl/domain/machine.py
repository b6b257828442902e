"""TimerStateMachine — one user's timer, pure logic, no I/O.

Time comes from an injected clock; events go out on an injected
:class:`~tmrctl.domain.events.EventChannel`. The machine never sleeps
and never counts ticks: ``tick()`` recomputes everything from
``start_time``, ``paused_at`` and the accumulated pause total.

Overtime policy: when an allocation runs out the machine emits
``allocation_exceeded`` once and keeps running into negative
``time_remaining``. Only an explicit ``stop()`` finalizes the session.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from tmrctl.domain.errors import (
    AlreadyActive,
    AssignmentDenied,
    InvalidTransition,
    InvariantViolation,
    PauseBudgetExceeded,
)
from tmrctl.domain.events import EventChannel, EventKind, TimerEvent
from tmrctl.domain.lifecycle import StopReason, TimerStatus, is_valid_transition
from tmrctl.domain.session import PauseInterval, SessionKey, TimerSession

if TYPE_CHECKING:
    from tmrctl.domain.clock import Clock
    from tmrctl.domain.ports import Authorizer

_MIN_STEP = timedelta(microseconds=1)


@dataclass(frozen=True)
class TimerPolicy:
    """Pause budget and warning thresholds."""

    max_pause_count: int = 5
    max_pause_time_seconds: int = 180
    pause_warning_seconds: int = 10


@dataclass
class TickResult:
    status: TimerStatus
    time_remaining: float
    events: list[EventKind] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Whether the tick produced a state change that must be persisted."""
        return bool(self.events)


class PauseInfo(BaseModel):
    model_config = {"frozen": True}

    pause_count: int = 0
    pauses_left: int = 0
    pause_time_used: int = 0
    pause_time_left: int = 0
    paused_at: datetime | None = None


class TimerProjection(BaseModel):
    """Read model for UIs: ``{status, time_remaining, pause_info}`` and friends."""

    model_config = {"frozen": True}

    status: TimerStatus
    key: SessionKey | None = None
    task_title: str | None = None
    allocated_seconds: int | None = None
    elapsed_seconds: float = 0.0
    time_remaining: float = 0.0
    overtime: bool = False
    pause_info: PauseInfo = PauseInfo()
    stop_reason: StopReason | None = None


class TimerStateMachine:
    """State machine for a single user's timer session.

    Parameters:
        user_id: Owner of every session this machine creates.
        device_id: Stamped on every snapshot this machine writes.
        clock: Wall-clock source.
        policy: Pause budget limits.
        authorizer: Consulted by ``start()``; None allows everything.
        channel: Receives a :class:`TimerEvent` for every transition.
    """

    def __init__(
        self,
        user_id: str,
        *,
        device_id: str,
        clock: Clock,
        policy: TimerPolicy | None = None,
        authorizer: Authorizer | None = None,
        channel: EventChannel[TimerEvent] | None = None,
        session: TimerSession | None = None,
    ) -> None:
        self._user_id = user_id
        self._device_id = device_id
        self._clock = clock
        self._policy = policy or TimerPolicy()
        self._authorizer = authorizer
        self._channel = channel
        self._session = session

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def session(self) -> TimerSession | None:
        return self._session

    @property
    def status(self) -> TimerStatus:
        if self._session is None:
            return TimerStatus.IDLE
        return self._session.status

    @property
    def policy(self) -> TimerPolicy:
        return self._policy

    def load(self, session: TimerSession | None) -> None:
        """Replace the current snapshot (hydration or conflict resolution).

        This is the only path that may overwrite ``start_time``.
        """
        if session is not None and session.user_id != self._user_id:
            msg = f"Session for {session.user_id} loaded into machine for {self._user_id}"
            raise InvariantViolation(msg)
        self._session = session

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(
        self,
        project_id: str,
        task_id: str,
        *,
        allocated_seconds: int | None = None,
        task_title: str | None = None,
    ) -> TimerSession:
        """Create a new running session."""
        if allocated_seconds is not None and allocated_seconds <= 0:
            msg = f"allocated_seconds must be positive, got {allocated_seconds}"
            raise ValueError(msg)

        current = self._session
        if current is not None and current.is_active:
            raise AlreadyActive(
                f"Timer already {current.status} for {current.key}",
                key=str(current.key),
            )

        if self._authorizer is not None and not self._authorizer.can_start_timer(
            self._user_id, project_id, task_id
        ):
            raise AssignmentDenied(
                f"User {self._user_id} is not assigned to {project_id}/{task_id}",
                project_id=project_id,
                task_id=task_id,
            )

        now = self._clock.now()
        last = current.last_updated if current is not None else None
        session = TimerSession(
            user_id=self._user_id,
            project_id=project_id,
            task_id=task_id,
            task_title=task_title,
            status=TimerStatus.RUNNING,
            start_time=now,
            allocated_seconds=allocated_seconds,
            last_updated=self._next_stamp(now, last),
            device_id=self._device_id,
            idempotency_key=new_idempotency_key(),
            sync_version=1,
        )
        self._session = session
        self._emit(EventKind.STARTED, now, allocated_seconds=allocated_seconds)
        return session

    def pause(self) -> TimerSession:
        session = self._require(TimerStatus.PAUSED)
        if session.pause_count >= self._policy.max_pause_count:
            raise PauseBudgetExceeded(
                f"Pause limit of {self._policy.max_pause_count} reached",
                pause_count=session.pause_count,
            )

        now = self._clock.now()
        updated = self._stamp(
            session,
            now,
            status=TimerStatus.PAUSED,
            paused_at=now,
            pause_count=session.pause_count + 1,
            pause_warning_shown=False,
            pause_history=(*session.pause_history, PauseInterval(paused_at=now)),
        )
        self._session = updated
        self._emit(
            EventKind.PAUSED,
            now,
            pause_count=updated.pause_count,
            pauses_left=self._policy.max_pause_count - updated.pause_count,
        )
        return updated

    def resume(self) -> TimerSession:
        session = self._require(TimerStatus.RUNNING)
        now = self._clock.now()
        pause_duration = session.current_pause_seconds(now)
        total = session.total_paused_seconds + pause_duration
        updated = self._stamp(
            session,
            now,
            status=TimerStatus.RUNNING,
            paused_at=None,
            total_paused_seconds=total,
            pause_time_used_seconds=int(total),
            pause_warning_shown=False,
            pause_history=_close_last_pause(session.pause_history, now),
        )
        self._session = updated
        self._emit(EventKind.RESUMED, now, pause_duration=round(pause_duration, 3))
        return updated

    def stop(self, notes: str | None = None, *, completed: bool = False) -> TimerSession:
        """Finalize the session.

        Never fails on budget grounds. With ``completed=True`` a session
        that has an allocation and is not in overtime ends as Completed;
        everything else ends as Stopped.
        """
        session = self._session
        if session is None or not session.is_active:
            raise InvalidTransition(
                f"Cannot stop a timer that is {self.status}",
                status=str(self.status),
            )

        now = self._clock.now()
        under_budget = session.allocated_seconds is not None and session.time_remaining(now) >= 0
        final = TimerStatus.COMPLETED if completed and under_budget else TimerStatus.STOPPED

        pause_duration = session.current_pause_seconds(now)
        total = session.total_paused_seconds + pause_duration
        updated = self._stamp(
            session,
            now,
            status=final,
            end_time=now,
            paused_at=None,
            total_paused_seconds=total,
            pause_time_used_seconds=int(total),
            pause_history=_close_last_pause(session.pause_history, now),
            stop_reason=StopReason.COMPLETED if final == TimerStatus.COMPLETED else StopReason.STOPPED,
            notes=notes,
        )
        self._session = updated
        kind = EventKind.COMPLETED if final == TimerStatus.COMPLETED else EventKind.STOPPED
        self._emit(
            kind,
            now,
            elapsed_seconds=round(updated.elapsed_running_seconds(now), 3),
            notes=notes,
        )
        return updated

    def tick(self) -> TickResult:
        """Recompute derived values from the wall clock.

        Raises:
            InvariantViolation: When there is no session, or the session
                was already finalized by the user. A session stopped by the
                pause limit tolerates further ticks as no-ops.
        """
        session = self._session
        if session is None:
            raise InvariantViolation("tick() called with no timer session")

        now = self._clock.now()
        if session.is_terminal:
            if session.stop_reason == StopReason.PAUSE_LIMIT:
                return TickResult(status=session.status, time_remaining=session.time_remaining(now))
            raise InvariantViolation(
                f"tick() called on finalized session {session.key}",
                status=str(session.status),
            )

        events: list[EventKind] = []
        if session.is_paused:
            session = self._tick_paused(session, now, events)
        else:
            session = self._tick_running(session, now, events)

        self._session = session
        for kind in events:
            self._emit(kind, now, **self._event_data(kind, session, now))
        return TickResult(
            status=session.status,
            time_remaining=session.time_remaining(now),
            events=events,
        )

    # ------------------------------------------------------------------
    # Read projection
    # ------------------------------------------------------------------

    def projection(self) -> TimerProjection:
        session = self._session
        if session is None:
            return TimerProjection(
                status=TimerStatus.IDLE,
                pause_info=PauseInfo(
                    pauses_left=self._policy.max_pause_count,
                    pause_time_left=self._policy.max_pause_time_seconds,
                ),
            )

        now = self._clock.now()
        used = min(session.pause_time_used(now), self._policy.max_pause_time_seconds)
        remaining = session.time_remaining(now)
        return TimerProjection(
            status=session.status,
            key=session.key,
            task_title=session.task_title,
            allocated_seconds=session.allocated_seconds,
            elapsed_seconds=session.elapsed_running_seconds(now),
            time_remaining=remaining,
            overtime=session.allocated_seconds is not None and remaining < 0,
            pause_info=PauseInfo(
                pause_count=session.pause_count,
                pauses_left=max(0, self._policy.max_pause_count - session.pause_count),
                pause_time_used=used,
                pause_time_left=self._policy.max_pause_time_seconds - used,
                paused_at=session.paused_at,
            ),
            stop_reason=session.stop_reason,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _tick_paused(
        self, session: TimerSession, now: datetime, events: list[EventKind]
    ) -> TimerSession:
        limit = self._policy.max_pause_time_seconds
        used = session.paused_total_seconds(now)

        if used >= limit:
            assert session.paused_at is not None
            # The budget ran out at a fixed instant, however late we notice.
            exhausted_at = session.paused_at + timedelta(
                seconds=max(0.0, limit - session.total_paused_seconds)
            )
            events.append(EventKind.PAUSE_LIMIT_EXCEEDED)
            return self._stamp(
                session,
                now,
                status=TimerStatus.STOPPED,
                stop_reason=StopReason.PAUSE_LIMIT,
                end_time=exhausted_at,
                paused_at=None,
                total_paused_seconds=float(limit),
                pause_time_used_seconds=limit,
                pause_history=_close_last_pause(session.pause_history, exhausted_at),
            )

        if (
            not session.pause_warning_shown
            and limit - used <= self._policy.pause_warning_seconds
        ):
            events.append(EventKind.PAUSE_WARNING)
            return self._stamp(
                session,
                now,
                pause_warning_shown=True,
                pause_time_used_seconds=max(session.pause_time_used_seconds, int(used)),
            )

        # Local refresh only; not a new version.
        return session.evolve(
            pause_time_used_seconds=max(session.pause_time_used_seconds, int(used))
        )

    def _tick_running(
        self, session: TimerSession, now: datetime, events: list[EventKind]
    ) -> TimerSession:
        if (
            session.allocated_seconds is not None
            and not session.allocation_exceeded
            and session.time_remaining(now) <= 0
        ):
            events.append(EventKind.ALLOCATION_EXCEEDED)
            return self._stamp(session, now, allocation_exceeded=True)
        return session

    def _event_data(self, kind: EventKind, session: TimerSession, now: datetime) -> dict[str, Any]:
        if kind == EventKind.PAUSE_WARNING:
            left = self._policy.max_pause_time_seconds - session.paused_total_seconds(now)
            return {"pause_time_left": max(0, int(left))}
        if kind == EventKind.PAUSE_LIMIT_EXCEEDED:
            return {"max_pause_time_seconds": self._policy.max_pause_time_seconds}
        if kind == EventKind.ALLOCATION_EXCEEDED:
            return {
                "allocated_seconds": session.allocated_seconds,
                "time_remaining": round(session.time_remaining(now), 3),
            }
        return {}

    def _require(self, target: TimerStatus) -> TimerSession:
        session = self._session
        current = self.status
        if session is None or not is_valid_transition(current, target) or session.is_terminal:
            raise InvalidTransition(
                f"Cannot move timer from {current} to {target}",
                status=str(current),
                target=str(target),
            )
        return session

    def _stamp(self, session: TimerSession, now: datetime, **changes: Any) -> TimerSession:
        """Produce a new version: fresh idempotency key, newer last_updated."""
        return session.evolve(
            **changes,
            last_updated=self._next_stamp(now, session.last_updated),
            device_id=self._device_id,
            idempotency_key=new_idempotency_key(),
            sync_version=session.sync_version + 1,
        )

    @staticmethod
    def _next_stamp(now: datetime, previous: datetime | None) -> datetime:
        if previous is not None and now <= previous:
            return previous + _MIN_STEP
        return now

    def _emit(self, kind: EventKind, now: datetime, **data: Any) -> None:
        if self._channel is None or self._session is None:
            return
        self._channel.publish(TimerEvent(kind=kind, key=self._session.key, at=now, data=data))


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


def _close_last_pause(
    history: tuple[PauseInterval, ...], at: datetime
) -> tuple[PauseInterval, ...]:
    if not history or history[-1].resumed_at is not None:
        return history
    last = history[-1]
    return (*history[:-1], PauseInterval(paused_at=last.paused_at, resumed_at=at))
