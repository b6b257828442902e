"""TimerService — ServiceResult adapter between the shell and TimerEngine.

Engine errors become ``ServiceResult(ok=False)`` with the error's stable
code. Timer events raised during an operation are handed to the
notification dispatcher, and the ones that need attention come back as
warnings. Unsent writes and parked conflicts go to the local outbox after
every operation.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from tmrctl.domain.conflicts import ResolutionStrategy
from tmrctl.domain.errors import TimerError
from tmrctl.domain.session import format_duration
from tmrctl.infrastructure.outbox import OutboxState, UnsentWrite
from tmrctl.services.base import BaseService
from tmrctl.services.engine import TimerEngine
from tmrctl.services.notifications import WARNING_KINDS, describe, hook_payload
from tmrctl.services.optimistic import OptimisticEntry
from tmrctl.services.result import ServiceResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from tmrctl.domain.conflicts import Conflict
    from tmrctl.domain.events import TimerEvent
    from tmrctl.domain.machine import TimerProjection
    from tmrctl.domain.session import TimerSession
    from tmrctl.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)

OFFLINE_WARNING = "Session store unreachable; change kept locally and will sync on reconnect"


class TimerService(BaseService):
    """Timer operations for one user of a workspace."""

    def __init__(self, workspace: Workspace, *, user_id: str | None = None) -> None:
        super().__init__(workspace)
        self._user_id = user_id or workspace.settings.effective_user
        self._engine: TimerEngine | None = None
        self._events: list[TimerEvent] = []
        self._events_lock = threading.Lock()

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def engine(self) -> TimerEngine:
        """The connected engine (created and hydrated on first access).

        Unsent writes and parked conflicts saved by an earlier invocation
        are restored before connecting, so connecting pushes them.
        """
        if self._engine is None:
            settings = self._workspace.settings
            engine = TimerEngine(
                self._user_id,
                store=self._workspace.store,
                device_id=self._workspace.device_id,
                clock=self._workspace.clock,
                authorizer=self._workspace.authorizer,
                timer_config=settings.timer,
                sync_config=settings.sync,
            )
            engine.events.subscribe(self._collect)
            saved = self._workspace.outbox.load(self._user_id)
            engine.restore(
                [
                    OptimisticEntry(snapshot=write.snapshot, inserted_at=write.inserted_at)
                    for write in saved.unsent
                ],
                saved.conflicts,
            )
            self._engine = engine
            engine.connect()
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._save_outbox()
            self._engine.disconnect()

    # ------------------------------------------------------------------
    # Timer operations
    # ------------------------------------------------------------------

    def start(
        self,
        project_id: str,
        task_id: str,
        *,
        allocated_seconds: int | None = None,
        task_title: str | None = None,
    ) -> ServiceResult:
        return self._run(
            "timer_start",
            lambda: self.engine.start(
                project_id, task_id, allocated_seconds=allocated_seconds, task_title=task_title
            ),
        )

    def pause(self) -> ServiceResult:
        return self._run("timer_pause", lambda: self.engine.pause())

    def resume(self) -> ServiceResult:
        return self._run("timer_resume", lambda: self.engine.resume())

    def stop(self, *, notes: str | None = None, completed: bool = False) -> ServiceResult:
        return self._run("timer_stop", lambda: self.engine.stop(notes, completed=completed))

    def status(self, *, poll: bool = False) -> ServiceResult:
        """Current projection, sync status, and parked conflicts.

        With *poll*, pending remote changes are applied first.
        """

        def _status() -> dict[str, Any]:
            engine = self.engine
            if poll:
                engine.sync()
            data = _projection_data(engine.projection())
            data["conflicts"] = [_conflict_data(c) for c in engine.pending_conflicts()]
            dispatcher = self._workspace.notifications
            if dispatcher is not None:
                data["undelivered_notifications"] = len(dispatcher.undelivered(self._user_id))
            data["sync"] = engine.sync_status.model_dump(mode="json", exclude={"conflict_data"})
            return data

        return self._run("timer_status", _status)

    def history(self, *, limit: int = 20) -> ServiceResult:
        def _history() -> dict[str, Any]:
            logs = self._workspace.store.list_logs(self._user_id, limit=limit)
            items = [
                {
                    **entry.model_dump(mode="json"),
                    "running": format_duration(entry.running_seconds),
                    "paused": format_duration(entry.paused_seconds),
                }
                for entry in logs
            ]
            return {"user_id": self._user_id, "count": len(items), "items": items}

        return self._run("timer_history", _history)

    def assign(self, project_id: str, task_id: str, *, revoke: bool = False) -> ServiceResult:
        """Grant (or revoke) this user's permission to time a task."""

        def _assign() -> dict[str, Any]:
            assignments = self._workspace.assignments
            if revoke:
                changed = assignments.unassign(self._user_id, project_id, task_id)
            else:
                changed = assignments.assign(self._user_id, project_id, task_id)
            return {
                "user_id": self._user_id,
                "project_id": project_id,
                "task_id": task_id,
                "assigned": not revoke,
                "changed": changed,
            }

        return self._run("timer_revoke" if revoke else "timer_assign", _assign)

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    def sync_status(self) -> ServiceResult:
        def _sync_status() -> dict[str, Any]:
            engine = self.engine
            engine.sync()
            data = engine.sync_status.model_dump(mode="json", exclude={"conflict_data"})
            data["offline"] = engine.offline
            data["pending_writes"] = len(engine.tracker.pending())
            data["conflicts"] = [_conflict_data(c) for c in engine.pending_conflicts()]
            dispatcher = self._workspace.notifications
            if dispatcher is not None:
                data["undelivered_notifications"] = len(dispatcher.undelivered(self._user_id))
            return data

        return self._run("sync_status", _sync_status)

    def reconcile(self) -> ServiceResult:
        def _reconcile() -> dict[str, Any]:
            report = self.engine.reconcile()
            data = {**report.model_dump(), **_projection_data(self.engine.projection())}
            dispatcher = self._workspace.notifications
            if dispatcher is not None:
                retried = dispatcher.redeliver(self._user_id)
                data["notifications_redelivered"] = sum(1 for n in retried if not n.is_open)
            return data

        return self._run("sync_reconcile", _reconcile)

    def resolve(self, conflict_id: str, strategy: ResolutionStrategy | str) -> ServiceResult:
        """Settle a parked ``user_choice`` conflict."""
        return self._run(
            "sync_resolve",
            lambda: self.engine.resolve_conflict(conflict_id, ResolutionStrategy(strategy)),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _collect(self, event: TimerEvent) -> None:
        with self._events_lock:
            self._events.append(event)

    def _drain_events(self, warnings: list[str]) -> list[dict[str, Any]]:
        """Notify collected events; return them for the payload."""
        with self._events_lock:
            events, self._events = self._events, []

        notified: list[dict[str, Any]] = []
        for event in events:
            if event.kind in WARNING_KINDS:
                warnings.append(describe(event))
            hook = hook_payload(event)
            if hook is None:
                continue
            hook_name, payload = hook
            self._notify(event, hook_name, payload, warnings)
            notified.append({"kind": str(event.kind), "message": payload["message"]})
        return notified

    def _save_outbox(self) -> None:
        if self._engine is None:
            return
        state = OutboxState(
            unsent=[
                UnsentWrite(snapshot=entry.snapshot, inserted_at=entry.inserted_at)
                for entry in self._engine.unsent()
            ],
            conflicts=self._engine.pending_conflicts(),
        )
        self._workspace.outbox.save(self._user_id, state)

    def _run(
        self,
        op: str,
        action: Callable[[], TimerSession | dict[str, Any]],
    ) -> ServiceResult:
        warnings: list[str] = []
        try:
            outcome = action()
        except TimerError as exc:
            self._drain_events(warnings)
            logger.debug("%s failed: %s", op, exc.message)
            return ServiceResult.failure(
                op, exc.code, exc.message, detail=exc.detail, warnings=warnings
            )
        except ValueError as exc:
            self._drain_events(warnings)
            return ServiceResult.failure(op, "INVALID_ARGUMENT", str(exc), warnings=warnings)
        finally:
            self._save_outbox()

        if isinstance(outcome, dict):
            data = outcome
        else:
            data = _projection_data(self.engine.projection())
            data["idempotency_key"] = outcome.idempotency_key
            data["sync_version"] = outcome.sync_version

        events = self._drain_events(warnings)
        if self._engine is not None and self._engine.offline:
            warnings.append(OFFLINE_WARNING)
        return ServiceResult(
            ok=True,
            op=op,
            data=data,
            warnings=warnings,
            meta={"user_id": self._user_id, "events": events} if events else None,
        )


def _projection_data(projection: TimerProjection) -> dict[str, Any]:
    data = projection.model_dump(mode="json")
    key = projection.key
    data["key"] = str(key) if key is not None else None
    data["time_remaining_display"] = format_duration(projection.time_remaining)
    data["elapsed_display"] = format_duration(projection.elapsed_seconds)
    return data


def _conflict_data(conflict: Conflict) -> dict[str, Any]:
    return {
        "id": conflict.id,
        "conflict_type": str(conflict.conflict_type),
        "local": str(conflict.local.key),
        "local_status": str(conflict.local.status),
        "remote": str(conflict.remote.key),
        "remote_status": str(conflict.remote.status),
        "detected_at": conflict.detected_at.isoformat(),
    }
