"""Built-in notifier that writes every timer notification to the log.

Warnings that need the user's attention (pause budget, overtime,
conflicts) log at WARNING so they surface without ``-v``.
"""

from __future__ import annotations

import logging
from typing import Any

import pluggy

hookimpl = pluggy.HookimplMarker("tmrctl")

logger = logging.getLogger(__name__)


class LogNotifier:
    """Routes notifications to the ``tmrctl.plugins.builtins.log_notifier`` logger."""

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self.delivered: list[tuple[str, str]] = []

    def _info(self, key: str, message: str) -> None:
        if self._enabled:
            logger.info("[%s] %s", key, message)
            self.delivered.append((key, message))

    def _warn(self, key: str, message: str) -> None:
        if self._enabled:
            logger.warning("[%s] %s", key, message)
            self.delivered.append((key, message))

    @hookimpl
    def post_timer_start(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._info(key, message)

    @hookimpl
    def post_timer_pause(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._info(key, message)

    @hookimpl
    def post_timer_resume(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._info(key, message)

    @hookimpl
    def post_timer_stop(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._info(key, message)

    @hookimpl
    def on_pause_warning(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._warn(key, message)

    @hookimpl
    def on_pause_limit_exceeded(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._warn(key, message)

    @hookimpl
    def on_allocation_exceeded(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._warn(key, message)

    @hookimpl
    def on_conflict_detected(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._warn(key, message)

    @hookimpl
    def on_conflict_resolved(self, key: str, message: str, data: dict[str, Any]) -> None:
        self._info(key, message)
