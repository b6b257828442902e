"""SQLAlchemy Core table definitions for the tmrctl database.

Timestamps are ISO 8601 text with microseconds. Session snapshots are
stored whole as JSON in ``payload``; the scalar columns beside it exist
for indexing and the single-active constraint.
"""

from __future__ import annotations

from sqlalchemy import (
    REAL,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    text,
)

metadata = MetaData()

timer_sessions = Table(
    "timer_sessions",
    metadata,
    Column("user_id", Text, primary_key=True),
    Column("project_id", Text, primary_key=True),
    Column("task_id", Text, primary_key=True),
    Column("status", Text, nullable=False),
    Column("is_active", Integer, nullable=False, default=0, server_default="0"),
    Column("payload", Text, nullable=False),  # JSON TimerSession
    Column("last_updated", Text, nullable=False),
    Column("device_id", Text, nullable=False),
    Column("idempotency_key", Text, nullable=False),
    Column("sync_version", Integer, nullable=False, default=1, server_default="1"),
)

# At most one running/paused session per user.
Index(
    "ix_timer_sessions_one_active",
    timer_sessions.c.user_id,
    unique=True,
    sqlite_where=text("is_active = 1"),
)

session_changes = Table(
    "session_changes",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("project_id", Text, nullable=False),
    Column("task_id", Text, nullable=False),
    Column("change_type", Text, nullable=False),  # added | modified | removed
    Column("payload", Text, nullable=False),
    Column("created", Text, nullable=False),
)

Index("ix_session_changes_user_seq", session_changes.c.user_id, session_changes.c.seq)

timer_logs = Table(
    "timer_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("project_id", Text, nullable=False),
    Column("task_id", Text, nullable=False),
    Column("task_title", Text),
    Column("start_time", Text, nullable=False),
    Column("end_time", Text, nullable=False),
    Column("running_seconds", REAL, nullable=False),
    Column("paused_seconds", REAL, nullable=False),
    Column("pause_count", Integer, nullable=False),
    Column("stop_reason", Text, nullable=False),
    Column("notes", Text),
    Column("device_id", Text, nullable=False),
    Column("idempotency_key", Text, nullable=False),
    Column("created", Text, nullable=False),
    UniqueConstraint("idempotency_key"),
)

assignments = Table(
    "assignments",
    metadata,
    Column("user_id", Text, primary_key=True),
    Column("project_id", Text, primary_key=True),
    Column("task_id", Text, primary_key=True),
    Column("created", Text, nullable=False),
)

# One row per notified timer event; delivery is ordered per session key.
notification_wal = Table(
    "notification_wal",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("session_key", Text, nullable=False),  # user/project/task
    Column("kind", Text, nullable=False),  # EventKind
    Column("hook_name", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON hook kwargs
    Column("status", Text, nullable=False),
    Column("attempts", Integer, default=0, server_default="0"),
    Column("error", Text),
    Column("created", Text, nullable=False),
    Column("delivered", Text),
)

Index(
    "ix_notification_wal_key_status",
    notification_wal.c.session_key,
    notification_wal.c.status,
)
