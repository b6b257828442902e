"""Subcommand modules for tmrctl.

Provides register_commands() which uses deferred imports to keep
``tmrctl --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the timer and sync groups on the root CLI group."""
    from tmrctl.commands.sync import sync
    from tmrctl.commands.timer import timer

    cli.add_command(timer)
    cli.add_command(sync)
