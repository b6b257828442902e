"""OptimisticUpdateTracker — short-lived local snapshots awaiting the store.

A pure, clock-injected cache: ``slot -> (snapshot, inserted_at,
acknowledged)``. The slot is the user's single active-timer position,
so a pending snapshot for one task can be compared with a remote
snapshot for another.

Entries whose store write was acknowledged expire after the TTL and are
then treated as accepted truth; their own echo does not remove them
early. Unacknowledged entries (offline writes)
never expire: they stay until acknowledged, resolved, or rolled back.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from tmrctl.domain.clock import seconds_between

if TYPE_CHECKING:
    from tmrctl.domain.clock import Clock
    from tmrctl.domain.session import TimerSession

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 10.0
_RECENT_KEYS = 64


@dataclass(frozen=True)
class OptimisticEntry:
    snapshot: TimerSession
    inserted_at: datetime
    acknowledged: bool = False


class OptimisticUpdateTracker:
    """Holds at most one pending snapshot per slot."""

    def __init__(self, clock: Clock, *, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._clock = clock
        self._ttl = ttl_seconds
        self._entries: dict[str, OptimisticEntry] = {}
        self._recent: deque[str] = deque(maxlen=_RECENT_KEYS)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, slot: str, snapshot: TimerSession) -> None:
        """Record *snapshot* for *slot*, overwriting any prior entry."""
        with self._lock:
            self._entries[slot] = OptimisticEntry(snapshot=snapshot, inserted_at=self._clock.now())
            self._recent.append(snapshot.idempotency_key)

    def remember(self, idempotency_key: str) -> None:
        """Record a write made outside ``apply`` (e.g. a superseding stop)."""
        with self._lock:
            self._recent.append(idempotency_key)

    def restore(self, slot: str, snapshot: TimerSession, inserted_at: datetime) -> None:
        """Reload an unsent write saved by an earlier process."""
        with self._lock:
            self._entries[slot] = OptimisticEntry(snapshot=snapshot, inserted_at=inserted_at)
            self._recent.append(snapshot.idempotency_key)

    def acknowledge(self, slot: str, idempotency_key: str) -> bool:
        """Mark the entry's store write as done. Stale keys are ignored."""
        with self._lock:
            entry = self._entries.get(slot)
            if entry is None or entry.snapshot.idempotency_key != idempotency_key:
                return False
            self._entries[slot] = OptimisticEntry(
                snapshot=entry.snapshot,
                inserted_at=entry.inserted_at,
                acknowledged=True,
            )
            return True

    def clear(self, slot: str) -> None:
        with self._lock:
            self._entries.pop(slot, None)

    def rollback(self, slot: str) -> TimerSession | None:
        """Drop the pending snapshot explicitly; returns what was dropped."""
        with self._lock:
            entry = self._entries.pop(slot, None)
        if entry is not None:
            logger.debug("Rolled back optimistic entry for %s", slot)
        return entry.snapshot if entry is not None else None

    def sweep(self) -> list[str]:
        """Drop acknowledged entries older than the TTL; return their slots."""
        now = self._clock.now()
        with self._lock:
            expired = [
                slot
                for slot, entry in self._entries.items()
                if entry.acknowledged and self._age(entry, now) >= self._ttl
            ]
            for slot in expired:
                del self._entries[slot]
        return expired

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, slot: str) -> TimerSession | None:
        """The pending snapshot for *slot*, if it has not expired."""
        entry = self.entry(slot)
        return entry.snapshot if entry is not None else None

    def entry(self, slot: str) -> OptimisticEntry | None:
        with self._lock:
            entry = self._entries.get(slot)
        if entry is None:
            return None
        if entry.acknowledged and self._age(entry, self._clock.now()) >= self._ttl:
            return None
        return entry

    def is_own(self, idempotency_key: str) -> bool:
        """Whether *idempotency_key* belongs to one of our recent writes."""
        with self._lock:
            return idempotency_key in self._recent

    def pending(self) -> dict[str, TimerSession]:
        """Entries whose store write has not been acknowledged yet."""
        with self._lock:
            return {
                slot: entry.snapshot
                for slot, entry in self._entries.items()
                if not entry.acknowledged
            }

    def unsent(self) -> list[OptimisticEntry]:
        with self._lock:
            return [entry for entry in self._entries.values() if not entry.acknowledged]

    def __contains__(self, slot: object) -> bool:
        return isinstance(slot, str) and self.entry(slot) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def _age(entry: OptimisticEntry, now: datetime) -> float:
        return seconds_between(entry.inserted_at, now)
