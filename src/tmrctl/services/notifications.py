"""Timer events rendered as notification hook calls.

Maps each :class:`EventKind` to a plugin hook and a human-readable
message. ``remote_applied`` is bookkeeping and produces no notification.
"""

from __future__ import annotations

from typing import Any

from tmrctl.domain.events import EventKind, TimerEvent
from tmrctl.domain.session import format_duration

HOOKS: dict[EventKind, str] = {
    EventKind.STARTED: "post_timer_start",
    EventKind.PAUSED: "post_timer_pause",
    EventKind.RESUMED: "post_timer_resume",
    EventKind.STOPPED: "post_timer_stop",
    EventKind.COMPLETED: "post_timer_stop",
    EventKind.PAUSE_WARNING: "on_pause_warning",
    EventKind.PAUSE_LIMIT_EXCEEDED: "on_pause_limit_exceeded",
    EventKind.ALLOCATION_EXCEEDED: "on_allocation_exceeded",
    EventKind.CONFLICT_DETECTED: "on_conflict_detected",
    EventKind.CONFLICT_RESOLVED: "on_conflict_resolved",
}

# Events a user should see as warnings on the command line.
WARNING_KINDS = frozenset(
    {
        EventKind.PAUSE_WARNING,
        EventKind.PAUSE_LIMIT_EXCEEDED,
        EventKind.ALLOCATION_EXCEEDED,
        EventKind.CONFLICT_DETECTED,
    }
)


def describe(event: TimerEvent) -> str:
    """One-line message for *event*."""
    data = event.data
    kind = event.kind
    task = f"{event.key.project_id}/{event.key.task_id}"
    if kind == EventKind.STARTED:
        allocated = data.get("allocated_seconds")
        budget = f" ({format_duration(allocated)} allocated)" if allocated else ""
        return f"Timer started for {task}{budget}"
    if kind == EventKind.PAUSED:
        return f"Timer paused for {task}; {data.get('pauses_left', 0)} pauses left"
    if kind == EventKind.RESUMED:
        return f"Timer resumed for {task} after {format_duration(data.get('pause_duration', 0))}"
    if kind == EventKind.STOPPED:
        return f"Timer stopped for {task} at {format_duration(data.get('elapsed_seconds', 0))}"
    if kind == EventKind.COMPLETED:
        return f"Task {task} completed in {format_duration(data.get('elapsed_seconds', 0))}"
    if kind == EventKind.PAUSE_WARNING:
        return f"Pause time almost up: {data.get('pause_time_left', 0)}s left"
    if kind == EventKind.PAUSE_LIMIT_EXCEEDED:
        return f"Pause limit reached; timer for {task} was stopped"
    if kind == EventKind.ALLOCATION_EXCEEDED:
        return f"Allocated time for {task} is used up; now in overtime"
    if kind == EventKind.CONFLICT_DETECTED:
        return f"Timer changed on another device ({data.get('conflict_type')})"
    if kind == EventKind.CONFLICT_RESOLVED:
        return f"Timer conflict resolved ({data.get('strategy')})"
    return f"Timer {kind} for {task}"


def hook_payload(event: TimerEvent) -> tuple[str, dict[str, Any]] | None:
    """``(hook_name, kwargs)`` for *event*, or None when it is not notified."""
    hook_name = HOOKS.get(event.kind)
    if hook_name is None:
        return None
    data = {"kind": str(event.kind), "at": event.at.isoformat(), **event.data}
    return hook_name, {"key": str(event.key), "message": describe(event), "data": data}
