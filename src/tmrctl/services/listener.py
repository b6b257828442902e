"""RemoteChangeListener — ordered store change batches for one user.

Each change is applied only when its ``last_updated`` is strictly newer
than the value already held for that session key (removals apply when
not older). Transport failures are retried with exponential backoff;
after ``max_attempts`` failed re-subscriptions the error propagates.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from tmrctl.domain.errors import SyncTransportError
from tmrctl.domain.ports import ChangeType, RemoteChange

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from tmrctl.domain.ports import SessionStore, Subscription
    from tmrctl.domain.session import TimerSession
    from tmrctl.services.sync_status import SyncStatusTracker

log = structlog.get_logger(__name__)


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float) -> float:
    """Delay before re-subscription attempt *attempt* (0-based)."""
    return min(base_delay * (2**attempt), max_delay)


class RemoteChangeListener:
    """Polls a store subscription and hands LWW-filtered changes to *on_change*.

    Parameters:
        store: Session store to subscribe to.
        user_id: Whose sessions to watch.
        status: Receives connect/disconnect/sync/error transitions.
        on_change: Called for every change that survives the LWW filter.
        on_reconnect: Called after a successful re-subscription.
        max_attempts: Re-subscription attempts before giving up.
        base_delay: First backoff delay in seconds.
        max_delay: Backoff cap in seconds.
        sleep: Injected for tests; defaults to waiting on the stop event so
            that closing the listener cuts a backoff short.
    """

    def __init__(
        self,
        store: SessionStore,
        user_id: str,
        *,
        status: SyncStatusTracker,
        on_change: Callable[[RemoteChange], None],
        on_reconnect: Callable[[], None] | None = None,
        max_attempts: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self._store = store
        self._user_id = user_id
        self._status = status
        self._on_change = on_change
        self._on_reconnect = on_reconnect
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._subscription: Subscription | None = None
        self._closed = False
        self._held: dict[str, datetime] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop.wait
        self._thread: threading.Thread | None = None

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Subscribe to the store. Raises SyncTransportError on failure."""
        with self._lock:
            if self._subscription is not None:
                return
            self._closed = False
            try:
                self._subscription = self._store.subscribe(self._user_id)
            except SyncTransportError as exc:
                self._status.mark_error(exc.message)
                raise
        self._status.mark_connected()
        log.debug("listener.opened", user_id=self._user_id)

    def close(self) -> None:
        self._closed = True
        self.stop()
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()
            self._status.mark_disconnected()
            log.debug("listener.closed", user_id=self._user_id)

    def observe(self, snapshot: TimerSession) -> None:
        """Seed the LWW filter with a snapshot obtained outside the feed."""
        with self._lock:
            held = self._held.get(str(snapshot.key))
            if held is None or snapshot.last_updated > held:
                self._held[str(snapshot.key)] = snapshot.last_updated

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(self) -> list[RemoteChange]:
        """Fetch one batch and deliver the changes that pass the LWW filter.

        Returns the delivered changes. On a transport failure the listener
        re-subscribes with backoff and returns an empty batch; the
        reconnect callback is responsible for catching up.
        """
        failure: SyncTransportError | None = None
        with self._lock:
            if self._subscription is None:
                raise SyncTransportError("Listener is not connected", user_id=self._user_id)
            try:
                batch = self._subscription.poll()
            except SyncTransportError as exc:
                failure = exc
                stale, self._subscription = self._subscription, None
            else:
                delivered = [change for change in batch if self._accept(change)]

        if failure is not None:
            # Backoff runs without the lock so observe() and close() stay responsive.
            if self._reconnect(failure, stale) and self._on_reconnect is not None:
                self._on_reconnect()
            return []

        for change in delivered:
            self._on_change(change)
        self._status.mark_synced()
        return delivered

    def _accept(self, change: RemoteChange) -> bool:
        key = str(change.snapshot.key)
        held = self._held.get(key)
        incoming = change.snapshot.last_updated
        if held is not None:
            stale = incoming < held if change.type == ChangeType.REMOVED else incoming <= held
            if stale:
                log.debug("listener.stale_change", key=key, type=str(change.type))
                return False
        self._held[key] = incoming
        return True

    def _reconnect(self, error: SyncTransportError, stale: Subscription) -> bool:
        """Re-subscribe with exponential backoff, re-raising after the last attempt.

        Returns False when the listener was closed while backing off.
        """
        self._status.mark_error(error.message)
        self._status.mark_disconnected()
        try:
            stale.close()
        except SyncTransportError:
            log.debug("listener.close_failed", user_id=self._user_id)

        last_error = error
        for attempt in range(self._max_attempts):
            delay = backoff_delay(attempt, base_delay=self._base_delay, max_delay=self._max_delay)
            log.warning(
                "listener.retry",
                user_id=self._user_id,
                attempt=attempt + 1,
                delay=delay,
                error=last_error.message,
            )
            self._sleep(delay)
            if self._closed:
                log.debug("listener.retry_cancelled", user_id=self._user_id)
                return False
            try:
                subscription = self._store.subscribe(self._user_id)
            except SyncTransportError as exc:
                last_error = exc
                self._status.mark_error(exc.message)
                continue
            with self._lock:
                if self._closed or self._subscription is not None:
                    subscription.close()
                    return False
                self._subscription = subscription
            self._status.mark_connected()
            self._status.clear_error()
            log.info("listener.reconnected", user_id=self._user_id, attempts=attempt + 1)
            return True

        log.error("listener.gave_up", user_id=self._user_id, attempts=self._max_attempts)
        raise last_error

    # ------------------------------------------------------------------
    # Background polling
    # ------------------------------------------------------------------

    def run(self, stop_event: threading.Event, interval: float) -> None:
        """Poll until *stop_event* is set or the retry budget is exhausted."""
        while not stop_event.is_set():
            try:
                self.poll()
            except SyncTransportError:
                log.error("listener.stopped", user_id=self._user_id)
                return
            stop_event.wait(interval)

    def start(self, interval: float) -> None:
        """Run :meth:`run` on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self.open()
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run,
            args=(self._stop, interval),
            name=f"tmrctl-listener-{self._user_id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
