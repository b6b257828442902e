"""Database engine setup for SQLite with WAL mode.

The DB is stored at ``{data_dir}/tmrctl.db``. WAL mode lets the tick
thread, the listener thread and other CLI processes read while one
writer commits; ``busy_timeout`` turns brief lock contention into a
wait instead of an immediate ``database is locked`` error.

SQLAlchemy Core (not ORM) is used: rows are whole JSON snapshots, so
there is nothing for an identity map to track.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from tmrctl.infrastructure.database.schema import metadata

DB_FILENAME = "tmrctl.db"


def create_db_engine(db_path: Path, *, busy_timeout_ms: int = 5000) -> Engine:
    """Create a SQLite engine with WAL mode and a busy timeout."""
    engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    return engine


def init_database(data_dir: Path) -> Engine:
    """Initialize the database at ``{data_dir}/tmrctl.db``.

    Creates *data_dir* and all tables from :data:`schema.metadata`.
    Idempotent.
    """
    data_dir.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(data_dir / DB_FILENAME)
    metadata.create_all(engine)
    return engine
