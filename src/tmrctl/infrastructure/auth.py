"""SqlAuthorizer — task assignments as the start-timer permission."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from tmrctl.domain.clock import SystemClock, to_iso
from tmrctl.infrastructure.database.schema import assignments

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from tmrctl.domain.clock import Clock


class SqlAuthorizer:
    """A user may time a task only if the task is assigned to them."""

    def __init__(self, engine: Engine, *, clock: Clock | None = None) -> None:
        self._engine = engine
        self._clock = clock or SystemClock()

    def can_start_timer(self, user_id: str, project_id: str, task_id: str) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(assignments.c.user_id).where(
                    assignments.c.user_id == user_id,
                    assignments.c.project_id == project_id,
                    assignments.c.task_id == task_id,
                )
            ).first()
        return row is not None

    def assign(self, user_id: str, project_id: str, task_id: str) -> bool:
        """Grant the assignment. Returns False if it already existed."""
        stmt = (
            sqlite_insert(assignments)
            .values(
                user_id=user_id,
                project_id=project_id,
                task_id=task_id,
                created=to_iso(self._clock.now()),
            )
            .on_conflict_do_nothing()
        )
        with self._engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount > 0

    def unassign(self, user_id: str, project_id: str, task_id: str) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                delete(assignments).where(
                    assignments.c.user_id == user_id,
                    assignments.c.project_id == project_id,
                    assignments.c.task_id == task_id,
                )
            )
        return result.rowcount > 0

    def list_assignments(self, user_id: str) -> list[tuple[str, str]]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(assignments.c.project_id, assignments.c.task_id)
                .where(assignments.c.user_id == user_id)
                .order_by(assignments.c.project_id, assignments.c.task_id)
            ).fetchall()
        return [(row.project_id, row.task_id) for row in rows]
