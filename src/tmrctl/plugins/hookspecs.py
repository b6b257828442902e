"""Pluggy hook specifications for timer notifications.

Every hook receives the session key (``user/project/task``), a
human-readable message, and the event's structured data. Delivery
(desktop, chat, email) is left to plugins.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("tmrctl")


class TmrctlHookSpec:
    """Hook specifications for the tmrctl plugin system."""

    @hookspec
    def post_timer_start(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called after a timer starts."""

    @hookspec
    def post_timer_pause(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called after a timer is paused."""

    @hookspec
    def post_timer_resume(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called after a paused timer resumes."""

    @hookspec
    def post_timer_stop(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called after a timer is stopped or completed."""

    @hookspec
    def on_pause_warning(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called once per pause when the pause budget is nearly spent."""

    @hookspec
    def on_pause_limit_exceeded(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called when the pause budget ran out and the timer was stopped."""

    @hookspec
    def on_allocation_exceeded(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called once when a timer enters overtime."""

    @hookspec
    def on_conflict_detected(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called when another device's write conflicts with ours."""

    @hookspec
    def on_conflict_resolved(self, key: str, message: str, data: dict[str, Any]) -> None:
        """Called after a conflict has been resolved."""
