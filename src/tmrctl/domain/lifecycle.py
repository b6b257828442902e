"""Timer status lifecycle.

Idle -> Running -> {Paused <-> Running} -> {Completed, Stopped}.
Only ``start()`` leaves Idle or a terminal state, and it always creates
a new session rather than reviving the old one.
"""

from __future__ import annotations

from enum import StrEnum


class TimerStatus(StrEnum):
    """Status of a single timer session."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


class StopReason(StrEnum):
    """Why a session reached a terminal state."""

    STOPPED = "stopped"
    COMPLETED = "completed"
    PAUSE_LIMIT = "pause_limit"
    SUPERSEDED = "superseded"


ACTIVE_STATUSES = frozenset({TimerStatus.RUNNING, TimerStatus.PAUSED})
TERMINAL_STATUSES = frozenset({TimerStatus.COMPLETED, TimerStatus.STOPPED})

# --- Transition map ---

TIMER_TRANSITIONS: dict[str, list[str]] = {
    "idle": ["running"],
    "running": ["paused", "completed", "stopped"],
    "paused": ["running", "completed", "stopped"],
    "completed": ["running"],  # via start(): a new session
    "stopped": ["running"],  # via start(): a new session
}


def is_valid_transition(
    current: str,
    target: str,
    transitions: dict[str, list[str]] = TIMER_TRANSITIONS,
) -> bool:
    """Check if transitioning from *current* to *target* is allowed."""
    allowed = transitions.get(current, [])
    return target in allowed


def is_active(status: str) -> bool:
    """Running or paused — the states that occupy a user's timer slot."""
    return status in ACTIVE_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
