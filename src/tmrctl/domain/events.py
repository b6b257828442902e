"""Typed in-process message channel.

Layers talk through an :class:`EventChannel` with an explicit subscriber
set instead of broadcasting untyped global events. A failing subscriber
is logged and skipped; it never breaks the publisher or other
subscribers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from tmrctl.domain.session import SessionKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventKind(StrEnum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    COMPLETED = "completed"
    PAUSE_WARNING = "pause_warning"
    PAUSE_LIMIT_EXCEEDED = "pause_limit_exceeded"
    ALLOCATION_EXCEEDED = "allocation_exceeded"
    CONFLICT_DETECTED = "conflict_detected"
    CONFLICT_RESOLVED = "conflict_resolved"
    REMOTE_APPLIED = "remote_applied"


class TimerEvent(BaseModel):
    """A state change worth telling the outside world about."""

    model_config = {"frozen": True}

    kind: EventKind
    key: SessionKey
    at: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class EventChannel(Generic[T]):
    """Publish/subscribe with a defined subscriber set.

    Usage::

        channel: EventChannel[TimerEvent] = EventChannel()
        unsubscribe = channel.subscribe(print)
        channel.publish(event)
        unsubscribe()
    """

    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._subscribers: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register *callback*; returns a handle that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, message: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception:
                logger.warning("Subscriber failed on channel %s", self._name, exc_info=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
