"""Tests for TickScheduler."""

from __future__ import annotations

import threading

import pytest

from tmrctl.services.scheduler import TickScheduler


class TestTickScheduler:
    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            TickScheduler(0, lambda: True)

    def test_callback_returning_false_stops_schedule(self) -> None:
        calls: list[int] = []
        done = threading.Event()

        def callback() -> bool:
            calls.append(1)
            if len(calls) == 3:
                done.set()
                return False
            return True

        scheduler = TickScheduler(0.01, callback)
        scheduler.start()
        assert done.wait(timeout=5)
        scheduler.cancel(wait=True)
        assert len(calls) == 3

    def test_failing_callback_keeps_ticking(self) -> None:
        calls: list[int] = []
        done = threading.Event()

        def callback() -> bool:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            done.set()
            return False

        scheduler = TickScheduler(0.01, callback)
        scheduler.start()
        assert done.wait(timeout=5)
        scheduler.cancel(wait=True)
        assert len(calls) == 2

    def test_cancel_stops_thread(self) -> None:
        scheduler = TickScheduler(0.01, lambda: True)
        scheduler.start()
        assert scheduler.running
        scheduler.cancel(wait=True)
        assert not scheduler.running
