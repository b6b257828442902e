"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, tmrctl.toml only contains
overrides. A fresh workspace needs no config file at all.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from tmrctl.domain.conflicts import ResolutionStrategy


def check_user_id(value: str | None) -> str | None:
    """Reject ids that would not round-trip through ``user/project/task`` keys."""
    if value is not None and (not value.strip() or "/" in value):
        raise ValueError(f"user id must be non-empty and contain no '/': {value!r}")
    return value


# --- tmrctl.toml sections ---


class TimerConfig(BaseModel):
    """[timer] section."""

    model_config = {"frozen": True}

    max_pause_count: int = Field(default=5, ge=0)
    max_pause_time_seconds: int = Field(default=180, gt=0)
    pause_warning_seconds: int = Field(default=10, ge=0)
    tick_interval_seconds: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def _warning_within_budget(self) -> TimerConfig:
        if self.pause_warning_seconds >= self.max_pause_time_seconds:
            msg = "pause_warning_seconds must be smaller than max_pause_time_seconds"
            raise ValueError(msg)
        return self


class SyncConfig(BaseModel):
    """[sync] section."""

    model_config = {"frozen": True}

    optimistic_ttl_seconds: float = Field(default=10.0, gt=0)
    max_drift_ms: int = Field(default=5000, ge=0)
    conflict_strategy: ResolutionStrategy = ResolutionStrategy.SERVER_WINS
    enable_optimistic_updates: bool = True
    max_retries: int = Field(default=5, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)


class StoreConfig(BaseModel):
    """[store] section."""

    model_config = {"frozen": True}

    data_dir: str = ".tmrctl"


class AuthConfig(BaseModel):
    """[auth] section."""

    model_config = {"frozen": True}

    require_assignment: bool = False


class UserConfig(BaseModel):
    """[user] section."""

    model_config = {"frozen": True}

    id: str | None = None
    device_id: str | None = None

    @field_validator("id")
    @classmethod
    def _id_fits_session_key(cls, value: str | None) -> str | None:
        return check_user_id(value)
