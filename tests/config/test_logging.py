"""Tests for structlog configuration."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
import structlog

from tmrctl.config.logging import bind_writer, clear_writer, configure_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    """Restore root logger state after each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    tmr = logging.getLogger("tmrctl")
    tmr_level = tmr.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    tmr.setLevel(tmr_level)


class TestConfigureLogging:
    def test_verbose_enables_debug(self) -> None:
        configure_logging(verbose=True, log_json=False)
        assert logging.getLogger("tmrctl").level == logging.DEBUG
        assert logging.getLogger().level == logging.WARNING

    def test_non_verbose_sets_warning(self) -> None:
        configure_logging(verbose=False, log_json=False)
        assert logging.getLogger("tmrctl").level == logging.WARNING

    def test_sqlalchemy_stays_quiet(self) -> None:
        configure_logging(verbose=True)
        assert logging.getLogger("sqlalchemy").level == logging.WARNING

    def test_json_mode_output(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        log = structlog.get_logger("tmrctl.test")
        log.warning("listener.retry", attempt=2, delay=1.0)
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["event"] == "listener.retry"
        assert parsed["attempt"] == 2
        assert parsed["level"] == "warning"
        assert parsed["logger"] == "tmrctl.test"
        assert "timestamp" in parsed

    def test_stdlib_logger_is_rendered_as_json(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        logging.getLogger("tmrctl.services.timer").warning("offline write kept")
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["event"] == "offline write kept"
        assert parsed["logger"] == "tmrctl.services.timer"

    def test_debug_filtered_when_not_verbose(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=False, log_json=True)
        structlog.get_logger("tmrctl.test").debug("engine.reconciled")
        assert capfd.readouterr().err == ""

    def test_bound_writer_tags_lines(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        bind_writer("alice", "laptop")
        try:
            logging.getLogger("tmrctl.services.timer").warning("offline write kept")
            structlog.get_logger("tmrctl.services.engine").warning("engine.offline_write")
        finally:
            clear_writer()
        lines = [json.loads(line) for line in capfd.readouterr().err.strip().splitlines()]
        assert [(p["user_id"], p["device_id"]) for p in lines] == [("alice", "laptop")] * 2

        structlog.get_logger("tmrctl.test").warning("after")
        assert "user_id" not in json.loads(capfd.readouterr().err.strip())

    def test_pluggy_stays_quiet(self) -> None:
        configure_logging(verbose=True)
        assert logging.getLogger("pluggy").level == logging.WARNING
