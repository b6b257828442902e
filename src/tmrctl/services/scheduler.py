"""TickScheduler — calls a callback roughly every interval on a daemon thread.

Correctness never depends on how many ticks fire: the state machine
recomputes from timestamps, so missed or late ticks only delay events.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TickScheduler:
    """Cancellable periodic caller.

    The callback returns ``False`` to stop the schedule from inside.
    """

    def __init__(self, interval: float, callback: Callable[[], bool]) -> None:
        if interval <= 0:
            msg = f"Tick interval must be positive, got {interval}"
            raise ValueError(msg)
        self._interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        # Each run gets its own event so a cancelled thread never resumes.
        self._cancelled = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._cancelled,),
            name="tmrctl-tick",
            daemon=True,
        )
        self._thread.start()

    def cancel(self, *, wait: bool = False) -> None:
        """Stop scheduling. Safe to call from inside the callback.

        With ``wait=True`` the call blocks until the thread has exited;
        do not wait while holding a lock the callback needs.
        """
        self._cancelled.set()
        thread, self._thread = self._thread, None
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval * 2 + 1)

    def _run(self, cancelled: threading.Event) -> None:
        while not cancelled.wait(self._interval):
            try:
                keep_going = self._callback()
            except Exception:
                logger.exception("Tick callback failed")
                continue
            if not keep_going:
                cancelled.set()
                return
