"""Tests for Workspace — resource wiring and device identity."""

from __future__ import annotations

from pathlib import Path

import pytest

from tmrctl.config.models import AuthConfig, UserConfig
from tmrctl.config.settings import TmrSettings
from tmrctl.domain.ports import AllowAllAuthorizer
from tmrctl.infrastructure.auth import SqlAuthorizer
from tmrctl.infrastructure.database.engine import DB_FILENAME
from tmrctl.infrastructure.workspace import Workspace


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TMRCTL_CONFIG", raising=False)


class TestWorkspace:
    def test_creates_database_in_data_dir(self, tmp_path: Path) -> None:
        ws = Workspace(TmrSettings.from_cli(root=tmp_path))
        try:
            assert (tmp_path / ".tmrctl" / DB_FILENAME).is_file()
            assert not (tmp_path / ".tmrctl" / "plugins").exists()
        finally:
            ws.close()

    def test_device_id_is_persisted(self, tmp_path: Path) -> None:
        first = Workspace(TmrSettings.from_cli(root=tmp_path))
        device_id = first.device_id
        first.close()
        second = Workspace(TmrSettings.from_cli(root=tmp_path))
        try:
            assert second.device_id == device_id
        finally:
            second.close()

    def test_configured_device_id_wins(self, tmp_path: Path) -> None:
        settings = TmrSettings.from_cli(root=tmp_path, user=UserConfig(device_id="phone"))
        ws = Workspace(settings)
        try:
            assert ws.device_id == "phone"
            assert not (tmp_path / ".tmrctl" / "device_id").exists()
        finally:
            ws.close()

    def test_authorizer_follows_auth_section(self, tmp_path: Path) -> None:
        open_ws = Workspace(TmrSettings.from_cli(root=tmp_path))
        strict_ws = Workspace(
            TmrSettings.from_cli(root=tmp_path, auth=AuthConfig(require_assignment=True))
        )
        try:
            assert isinstance(open_ws.authorizer, AllowAllAuthorizer)
            assert isinstance(strict_ws.authorizer, SqlAuthorizer)
        finally:
            open_ws.close()
            strict_ws.close()

    def test_notifications_register_log_notifier(self, tmp_path: Path) -> None:
        ws = Workspace(TmrSettings.from_cli(root=tmp_path))
        try:
            assert ws.notifications is None
            ws.init_notifications(sync=True)
            assert ws.notifications is not None
            assert "log-notifier" in ws.notifications.plugin_manager.list_plugin_names()
        finally:
            ws.close()
        assert ws.notifications is None
