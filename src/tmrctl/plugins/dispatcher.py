"""NotificationDispatcher — timer events delivered to notifiers through a WAL.

Each notified :class:`~tmrctl.domain.events.TimerEvent` is written to
``notification_wal`` before its hook runs, so a crash mid-delivery leaves
a row to retry. Delivery is ordered per session key: a row waits while an
earlier row for the same key is still open, so a notifier never sees
``post_timer_resume`` ahead of the pause it follows.

INVARIANT: Notifier failures are recorded on the row, never raised into
the timer operation that produced the event.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import insert, select, update

from tmrctl.domain.clock import SystemClock, to_iso
from tmrctl.infrastructure.database.schema import notification_wal

if TYPE_CHECKING:
    from sqlalchemy import Row
    from sqlalchemy.engine import Engine

    from tmrctl.domain.clock import Clock
    from tmrctl.domain.events import TimerEvent
    from tmrctl.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"  # retried by redeliver()
    ABANDONED = "abandoned"  # max_attempts used up


_OPEN = [str(DeliveryStatus.PENDING), str(DeliveryStatus.FAILED)]


class Notification(BaseModel):
    """One WAL row as seen by callers."""

    model_config = {"frozen": True}

    id: int
    user_id: str
    session_key: str
    kind: str
    hook_name: str
    status: DeliveryStatus
    attempts: int = 0
    error: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in (DeliveryStatus.PENDING, DeliveryStatus.FAILED)


def _to_notification(row: Row[Any]) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        session_key=row.session_key,
        kind=row.kind,
        hook_name=row.hook_name,
        status=DeliveryStatus(row.status),
        attempts=row.attempts,
        error=row.error,
    )


class NotificationDispatcher:
    """Writes notified timer events to the WAL and delivers them to notifiers.

    Parameters:
        engine: SQLAlchemy engine with the ``notification_wal`` table.
        plugin_manager: Registered notifiers.
        clock: Stamps ``created``/``delivered`` (defaults to system time).
        sync: Deliver on the caller's thread (tests / ``--sync``).
        max_attempts: Failed deliveries before a row is abandoned.
    """

    def __init__(
        self,
        engine: Engine,
        plugin_manager: PluginManager,
        *,
        clock: Clock | None = None,
        sync: bool = False,
        max_attempts: int = 3,
    ) -> None:
        self._engine = engine
        self._pm = plugin_manager
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        # A single worker keeps background deliveries in publish order.
        self._executor: ThreadPoolExecutor | None = (
            None if sync else ThreadPoolExecutor(max_workers=1, thread_name_prefix="tmrctl-notify")
        )
        self._futures: list[Future[None]] = []

    @property
    def plugin_manager(self) -> PluginManager:
        return self._pm

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def publish(self, event: TimerEvent, hook_name: str, payload: dict[str, Any]) -> int:
        """Record *event* under *hook_name*, then deliver it. Returns the row id."""
        row_id = self._record(event, hook_name, payload)
        if self._executor is None:
            self._deliver(row_id)
        else:
            self._futures.append(self._executor.submit(self._deliver, row_id))
        return row_id

    def undelivered(self, user_id: str | None = None) -> list[Notification]:
        """Pending and failed rows, oldest first."""
        query = select(notification_wal).where(notification_wal.c.status.in_(_OPEN))
        if user_id is not None:
            query = query.where(notification_wal.c.user_id == user_id)
        with self._engine.connect() as conn:
            rows = conn.execute(query.order_by(notification_wal.c.id)).fetchall()
        return [_to_notification(row) for row in rows]

    def redeliver(self, user_id: str | None = None) -> list[Notification]:
        """Retry open rows oldest first and return their new state.

        Once a row stays open, later rows for the same session key are
        left alone for the rest of the pass.
        """
        self._wait_futures()
        stuck: set[str] = set()
        results: list[Notification] = []
        for note in self.undelivered(user_id):
            if note.session_key not in stuck:
                self._deliver(note.id)
                note = self.get(note.id)
            if note.is_open:
                stuck.add(note.session_key)
            results.append(note)
        return results

    def get(self, row_id: int) -> Notification:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(notification_wal).where(notification_wal.c.id == row_id)
            ).one()
        return _to_notification(row)

    def shutdown(self) -> None:
        """Wait for background deliveries, then stop the worker."""
        self._wait_futures()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _stamp(self) -> str | None:
        return to_iso(self._clock.now())

    def _record(self, event: TimerEvent, hook_name: str, payload: dict[str, Any]) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(notification_wal).values(
                    user_id=event.key.user_id,
                    session_key=str(event.key),
                    kind=str(event.kind),
                    hook_name=hook_name,
                    payload=json.dumps(payload, default=str),
                    status=str(DeliveryStatus.PENDING),
                    attempts=0,
                    created=self._stamp(),
                )
            )
            assert result.lastrowid is not None
            return result.lastrowid

    def _deliver(self, row_id: int) -> None:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(notification_wal).where(notification_wal.c.id == row_id)
            ).one()
            ahead = conn.execute(
                select(notification_wal.c.id)
                .where(
                    notification_wal.c.session_key == row.session_key,
                    notification_wal.c.id < row_id,
                    notification_wal.c.status.in_(_OPEN),
                )
                .limit(1)
            ).first()
        if row.status not in _OPEN:
            return
        if ahead is not None:
            logger.debug(
                "Holding %s for %s behind row %d", row.hook_name, row.session_key, ahead.id
            )
            return
        if not self._pm.implements(row.hook_name):
            self._mark_delivered(row_id, row.attempts)
            return

        try:
            getattr(self._pm.hook, row.hook_name)(**json.loads(row.payload))
        except Exception as exc:
            logger.debug("Notifier hook %s failed: %s", row.hook_name, exc)
            self._mark_failed(row_id, row.attempts + 1, str(exc))
        else:
            self._mark_delivered(row_id, row.attempts + 1)

    def _mark_delivered(self, row_id: int, attempts: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                update(notification_wal)
                .where(notification_wal.c.id == row_id)
                .values(
                    status=str(DeliveryStatus.DELIVERED),
                    attempts=attempts,
                    error=None,
                    delivered=self._stamp(),
                )
            )

    def _mark_failed(self, row_id: int, attempts: int, error: str) -> None:
        if attempts >= self._max_attempts:
            status = DeliveryStatus.ABANDONED
        else:
            status = DeliveryStatus.FAILED
        with self._engine.begin() as conn:
            conn.execute(
                update(notification_wal)
                .where(notification_wal.c.id == row_id)
                .values(status=str(status), attempts=attempts, error=error)
            )
        if status == DeliveryStatus.ABANDONED:
            logger.warning(
                "Gave up on notification %d after %d attempts: %s", row_id, attempts, error
            )

    def _wait_futures(self) -> None:
        for future in self._futures:
            try:
                future.result(timeout=30)
            except Exception:
                logger.debug("Background notification delivery raised", exc_info=True)
        self._futures.clear()
