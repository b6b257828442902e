"""Injectable wall clocks.

Everything time-dependent in the engine reads time through a ``Clock``
so tests and simulations can move time without sleeping.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Current UTC wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to.

    Usage::

        clock = ManualClock(datetime(2026, 1, 1, 9, tzinfo=UTC))
        clock.advance(seconds=90)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, *, milliseconds: float = 0.0) -> datetime:
        self._now += timedelta(seconds=seconds, milliseconds=milliseconds)
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant


def seconds_between(earlier: datetime, later: datetime) -> float:
    """Signed number of seconds from *earlier* to *later*."""
    return (later - earlier).total_seconds()


def to_iso(instant: datetime | None) -> str | None:
    """ISO 8601 with microseconds, or None."""
    return instant.isoformat() if instant is not None else None
