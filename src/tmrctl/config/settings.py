"""TmrSettings — CLI flags, ``TMRCTL_*`` env vars and ``tmrctl.toml`` merged.

Priority, highest first:
  1. CLI flags (init kwargs)
  2. Env vars, ``__`` between section and key (``TMRCTL_SYNC__MAX_DRIFT_MS``)
  3. ``tmrctl.toml`` found by :func:`~tmrctl.config.discovery.find_config`
  4. Defaults baked into the section models
"""

from __future__ import annotations

import getpass
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from tmrctl.config.discovery import find_config, read_config
from tmrctl.config.models import (
    AuthConfig,
    StoreConfig,
    SyncConfig,
    TimerConfig,
    UserConfig,
    check_user_id,
)

# The file chosen by from_cli(); settings_customise_sources is a classmethod
# and cannot receive it as an argument.
_config_file: ContextVar[Path | None] = ContextVar("tmrctl_config_file", default=None)


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Section tables from ``tmrctl.toml``; empty when there is no file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path | None) -> None:
        super().__init__(settings_cls)
        self._tables: dict[str, Any] = (
            read_config(path) if path is not None and path.is_file() else {}
        )

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self._tables.get(field_name), field_name, field_name in self._tables

    def __call__(self) -> dict[str, Any]:
        return self._tables


class TmrSettings(BaseSettings):
    """Everything one invocation (or one embedded engine) runs with.

    Attributes:
        root: Workspace directory; the config file's parent, else CWD.
        config_path: The config file in effect, if any.
        user_id: ``--user``; wins over ``[user] id`` and the login name.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "TMRCTL_",
        "env_nested_delimiter": "__",
    }

    root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    # Global CLI flags
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False
    sync_dispatch: bool = False
    user_id: str | None = None

    # tmrctl.toml sections
    timer: TimerConfig = Field(default_factory=TimerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    user: UserConfig = Field(default_factory=UserConfig)

    @field_validator("user_id")
    @classmethod
    def _user_id_fits_session_key(cls, value: str | None) -> str | None:
        return check_user_id(value)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, _config_file.get()),
        )

    @property
    def data_dir(self) -> Path:
        """Directory holding the database, device id and outbox."""
        path = Path(self.store.data_dir)
        return path if path.is_absolute() else self.root / path

    @property
    def effective_user(self) -> str:
        return self.user_id or self.user.id or getpass.getuser()

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        root: Path | None = None,
        **cli_flags: Any,
    ) -> TmrSettings:
        """Settings for one CLI invocation.

        An explicit *config_path* that does not exist means no config file.
        Without *root*, the workspace is the config file's directory.
        """
        if config_path:
            explicit = Path(config_path)
            toml_path = explicit if explicit.is_file() else None
        else:
            toml_path = find_config(root)

        if root is None:
            root = toml_path.parent if toml_path is not None else Path.cwd()

        token = _config_file.set(toml_path)
        try:
            return cls(root=root, config_path=toml_path, **cli_flags)
        finally:
            _config_file.reset(token)
