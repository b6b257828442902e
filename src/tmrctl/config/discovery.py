"""Locating and reading ``tmrctl.toml``.

The file is found the way git finds ``.git/``: walk up from the working
directory. ``TMRCTL_CONFIG`` (or ``--config``) names a file directly and
disables the walk, so a timer started from a nested project directory
still reads the workspace's settings.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

import click

CONFIG_FILENAME = "tmrctl.toml"
CONFIG_ENV_VAR = "TMRCTL_CONFIG"


def find_config(start: Path | None = None) -> Path | None:
    """Path of the config in effect for *start* (default: cwd), or None.

    A ``TMRCTL_CONFIG`` that points at a missing file means no config, not
    a fallback to the walk.
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit)
        return path if path.is_file() else None

    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def read_config(path: Path) -> dict[str, Any]:
    """Parse *path* into raw section tables; bad TOML is a usage error."""
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise click.ClickException(f"Invalid TOML in {path}: {exc}") from exc
