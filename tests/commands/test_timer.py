"""Tests for the ``tmrctl timer`` command group."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from tmrctl.cli import cli


def _json(result) -> dict:
    return json.loads(result.stdout)


@pytest.mark.usefixtures("_isolated_workspace")
class TestTimerLifecycleCommands:
    def test_start(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["timer", "start", "web", "T-1", "--title", "Login form"])
        assert result.exit_code == 0
        assert "Login form" in result.stdout
        assert "running" in result.stdout

    def test_start_json(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--json", "timer", "start", "web", "T-1", "-m", "25"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["ok"] is True
        assert data["op"] == "timer_start"
        assert data["data"]["key"] == "alice/web/T-1"
        assert data["data"]["allocated_seconds"] == 1500
        assert data["data"]["status"] == "running"

    def test_user_flag(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--json", "-u", "bob", "timer", "start", "web", "T-1"])
        assert result.exit_code == 0
        assert _json(result)["data"]["key"] == "bob/web/T-1"

    def test_zero_minutes_rejected(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["timer", "start", "web", "T-1", "--minutes", "0"])
        assert result.exit_code == 2

    def test_pause_resume_across_invocations(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "start", "web", "T-1"])

        paused = cli_runner.invoke(cli, ["--json", "timer", "pause"])
        assert paused.exit_code == 0
        data = _json(paused)["data"]
        assert data["status"] == "paused"
        assert data["pause_info"]["pause_count"] == 1
        assert data["pause_info"]["pauses_left"] == 4

        resumed = cli_runner.invoke(cli, ["--json", "timer", "resume"])
        assert resumed.exit_code == 0
        assert _json(resumed)["data"]["status"] == "running"

    def test_second_start_fails(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "start", "web", "T-1"])
        result = cli_runner.invoke(cli, ["timer", "start", "web", "T-2"])
        assert result.exit_code == 1
        assert "ALREADY_ACTIVE" in result.stderr
        assert result.stdout == ""

    def test_pause_when_idle_fails(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--json", "timer", "pause"])
        assert result.exit_code == 1
        data = json.loads(result.stderr)
        assert data["ok"] is False
        assert data["error"]["code"] == "INVALID_TRANSITION"

    def test_stop_then_history(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "start", "web", "T-1", "--title", "Login form"])
        stopped = cli_runner.invoke(cli, ["--json", "timer", "stop", "--completed", "--notes", "done"])
        assert stopped.exit_code == 0
        assert _json(stopped)["data"]["status"] == "completed"

        history = cli_runner.invoke(cli, ["--json", "timer", "history"])
        assert history.exit_code == 0
        data = _json(history)["data"]
        assert data["count"] == 1
        assert data["items"][0]["notes"] == "done"
        assert data["items"][0]["stop_reason"] == "completed"

        human = cli_runner.invoke(cli, ["timer", "history"])
        assert "Login form" in human.stdout
        assert "1 sessions" in human.stdout


@pytest.mark.usefixtures("_isolated_workspace")
class TestTimerStatusCommands:
    def test_idle_status(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--json", "timer", "status"])
        assert result.exit_code == 0
        data = _json(result)["data"]
        assert data["status"] == "idle"
        assert data["key"] is None
        assert data["conflicts"] == []

    def test_quiet_status(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "start", "web", "T-1", "-m", "30"])
        result = cli_runner.invoke(cli, ["-q", "timer", "status"])
        assert result.exit_code == 0
        assert result.stdout.startswith("running 0:")

    def test_watch_once(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "start", "web", "T-1"])
        result = cli_runner.invoke(
            cli, ["-q", "timer", "watch", "--count", "1", "--interval", "0"]
        )
        assert result.exit_code == 0
        assert result.stdout.strip().splitlines() == [result.stdout.strip()]
        assert result.stdout.startswith("running")

    def test_watch_stops_when_idle(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["-q", "timer", "watch", "--interval", "0"])
        assert result.exit_code == 0
        assert result.stdout.startswith("idle")


@pytest.mark.usefixtures("_isolated_workspace")
class TestAssignmentCommands:
    @pytest.fixture
    def _require_assignment(self, workspace_root: Path) -> None:
        config = workspace_root / "tmrctl.toml"
        config.write_text(
            config.read_text(encoding="utf-8") + "\n[auth]\nrequire_assignment = true\n",
            encoding="utf-8",
        )

    @pytest.mark.usefixtures("_require_assignment")
    def test_unassigned_start_denied(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["timer", "start", "web", "T-1"])
        assert result.exit_code == 1
        assert "ASSIGNMENT_DENIED" in result.stderr

    @pytest.mark.usefixtures("_require_assignment")
    def test_assign_then_start(self, cli_runner: CliRunner) -> None:
        assigned = cli_runner.invoke(cli, ["--json", "timer", "assign", "web", "T-1"])
        assert assigned.exit_code == 0
        assert _json(assigned)["data"]["assigned"] is True

        result = cli_runner.invoke(cli, ["timer", "start", "web", "T-1"])
        assert result.exit_code == 0

    def test_revoke(self, cli_runner: CliRunner) -> None:
        cli_runner.invoke(cli, ["timer", "assign", "web", "T-1"])
        result = cli_runner.invoke(cli, ["--json", "timer", "assign", "web", "T-1", "--revoke"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["op"] == "timer_revoke"
        assert data["data"]["changed"] is True
