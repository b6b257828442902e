"""SQLite database engine and schema via SQLAlchemy Core."""

from tmrctl.infrastructure.database.engine import create_db_engine, init_database
from tmrctl.infrastructure.database.schema import (
    assignments,
    metadata,
    notification_wal,
    session_changes,
    timer_logs,
    timer_sessions,
)

__all__ = [
    "assignments",
    "create_db_engine",
    "init_database",
    "metadata",
    "notification_wal",
    "session_changes",
    "timer_logs",
    "timer_sessions",
]
