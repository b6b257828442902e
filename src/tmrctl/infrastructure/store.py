"""SqlSessionStore — the shared session store on SQLite.

Every write to ``timer_sessions`` appends a row to ``session_changes``
inside the same transaction; subscriptions tail that feed by sequence
number, which gives each user an ordered change stream that any number
of processes can follow.

Error mapping:

- the partial unique index on active rows -> :class:`AlreadyActive`
- ``create`` over a still-active row for the same key -> :class:`AlreadyActive`
- ``OperationalError`` (locked, unreachable, disk) -> :class:`SyncTransportError`
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError

from tmrctl.domain.clock import SystemClock, to_iso
from tmrctl.domain.errors import AlreadyActive, SyncTransportError
from tmrctl.domain.ports import ChangeType, RemoteChange
from tmrctl.domain.session import SessionKey, TimeLog, TimerSession
from tmrctl.infrastructure.database.schema import session_changes, timer_logs, timer_sessions

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine

    from tmrctl.domain.clock import Clock

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@contextmanager
def _translate_errors(key: SessionKey | None = None) -> Iterator[None]:
    """Map SQLAlchemy failures onto engine error kinds."""
    try:
        yield
    except IntegrityError as exc:
        detail = {"key": str(key)} if key is not None else {}
        raise AlreadyActive("User already has an active timer", **detail) from exc
    except OperationalError as exc:
        logger.debug("Store operation failed", exc_info=True)
        raise SyncTransportError(f"Session store unavailable: {exc.orig}") from exc


def _key_clause(key: SessionKey) -> Any:
    return (
        (timer_sessions.c.user_id == key.user_id)
        & (timer_sessions.c.project_id == key.project_id)
        & (timer_sessions.c.task_id == key.task_id)
    )


class SqlSubscription:
    """Cursor over one user's change feed."""

    def __init__(
        self,
        engine: Engine,
        user_id: str,
        *,
        after: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._engine = engine
        self._user_id = user_id
        self._after = after
        self._batch_size = batch_size
        self._closed = False

    @property
    def position(self) -> int:
        return self._after

    def poll(self) -> list[RemoteChange]:
        if self._closed:
            raise SyncTransportError("Subscription is closed", user_id=self._user_id)
        with _translate_errors(), self._engine.connect() as conn:
            rows = conn.execute(
                select(session_changes)
                .where(
                    session_changes.c.user_id == self._user_id,
                    session_changes.c.seq > self._after,
                )
                .order_by(session_changes.c.seq)
                .limit(self._batch_size)
            ).fetchall()

        changes = [
            RemoteChange(
                type=ChangeType(row.change_type),
                snapshot=TimerSession.from_payload(json.loads(row.payload)),
                sequence=row.seq,
            )
            for row in rows
        ]
        if rows:
            self._after = rows[-1].seq
        return changes

    def close(self) -> None:
        self._closed = True


class SqlSessionStore:
    """:class:`~tmrctl.domain.ports.SessionStore` backed by SQLAlchemy Core."""

    def __init__(self, engine: Engine, *, clock: Clock | None = None) -> None:
        self._engine = engine
        self._clock = clock or SystemClock()

    @property
    def engine(self) -> Engine:
        return self._engine

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create(self, session: TimerSession) -> None:
        """Insert a new session; a still-active row under the same key is a conflict.

        A terminal row for the key is replaced, so a finished task can be
        started again.
        """
        self._write(session, create=True)

    def update(self, session: TimerSession) -> None:
        self._write(session)

    def delete(self, key: SessionKey) -> None:
        with _translate_errors(key), self._engine.begin() as conn:
            row = conn.execute(
                select(timer_sessions.c.payload).where(_key_clause(key))
            ).first()
            if row is None:
                return
            conn.execute(delete(timer_sessions).where(_key_clause(key)))
            self._record_change(conn, key, ChangeType.REMOVED, row.payload)

    def get(self, key: SessionKey) -> TimerSession | None:
        with _translate_errors(key), self._engine.connect() as conn:
            row = conn.execute(
                select(timer_sessions.c.payload).where(_key_clause(key))
            ).first()
        return TimerSession.from_payload(json.loads(row.payload)) if row is not None else None

    def query_active_for_user(self, user_id: str) -> list[TimerSession]:
        with _translate_errors(), self._engine.connect() as conn:
            rows = conn.execute(
                select(timer_sessions.c.payload).where(
                    timer_sessions.c.user_id == user_id,
                    timer_sessions.c.is_active == 1,
                )
            ).fetchall()
        return [TimerSession.from_payload(json.loads(row.payload)) for row in rows]

    def subscribe(self, user_id: str) -> SqlSubscription:
        """Tail *user_id*'s changes written from now on."""
        with _translate_errors(), self._engine.connect() as conn:
            position = conn.execute(
                select(func.coalesce(func.max(session_changes.c.seq), 0)).where(
                    session_changes.c.user_id == user_id
                )
            ).scalar_one()
        return SqlSubscription(self._engine, user_id, after=int(position))

    # ------------------------------------------------------------------
    # Time logs
    # ------------------------------------------------------------------

    def append_log(self, session: TimerSession) -> None:
        """Record a finished session once; repeats with the same key are ignored."""
        entry = TimeLog.from_session(session)
        values = entry.model_dump(mode="json")
        values["created"] = to_iso(self._clock.now())
        stmt = (
            sqlite_insert(timer_logs)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
        )
        with _translate_errors(session.key), self._engine.begin() as conn:
            conn.execute(stmt)

    def list_logs(self, user_id: str, *, limit: int = 20) -> list[TimeLog]:
        columns = [timer_logs.c[name] for name in TimeLog.model_fields]
        with _translate_errors(), self._engine.connect() as conn:
            rows = conn.execute(
                select(*columns)
                .where(timer_logs.c.user_id == user_id)
                .order_by(timer_logs.c.end_time.desc(), timer_logs.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [TimeLog.model_validate(dict(row._mapping)) for row in rows]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write(self, session: TimerSession, *, create: bool = False) -> None:
        key = session.key
        payload = json.dumps(session.to_payload())
        values = {
            "status": str(session.status),
            "is_active": 1 if session.is_active else 0,
            "payload": payload,
            "last_updated": to_iso(session.last_updated),
            "device_id": session.device_id,
            "idempotency_key": session.idempotency_key,
            "sync_version": session.sync_version,
        }
        stmt = (
            sqlite_insert(timer_sessions)
            .values(user_id=key.user_id, project_id=key.project_id, task_id=key.task_id, **values)
            .on_conflict_do_update(
                index_elements=["user_id", "project_id", "task_id"],
                set_=values,
            )
        )
        with _translate_errors(key), self._engine.begin() as conn:
            existed = conn.execute(
                select(timer_sessions.c.is_active).where(_key_clause(key))
            ).first()
            if create and existed is not None and existed.is_active:
                raise AlreadyActive("Session is already running", key=str(key))
            conn.execute(stmt)
            change = ChangeType.MODIFIED if existed is not None else ChangeType.ADDED
            self._record_change(conn, key, change, payload)
        logger.debug("Wrote %s (%s) for %s", session.status, session.idempotency_key, key)

    def _record_change(
        self, conn: Connection, key: SessionKey, change: ChangeType, payload: str
    ) -> None:
        conn.execute(
            insert(session_changes).values(
                user_id=key.user_id,
                project_id=key.project_id,
                task_id=key.task_id,
                change_type=str(change),
                payload=payload,
                created=to_iso(self._clock.now()),
            )
        )
