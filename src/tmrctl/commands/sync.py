"""Command group: sync status and conflict handling."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from tmrctl.commands._base import TmrGroup
from tmrctl.domain.conflicts import ResolutionStrategy

if TYPE_CHECKING:
    from tmrctl.commands._context import AppContext

_SYNC_EXAMPLES = """\
  tmrctl sync status
  tmrctl sync reconcile
  tmrctl sync resolve 4f1c2a local_wins"""

_STRATEGIES = [
    str(s) for s in ResolutionStrategy if s != ResolutionStrategy.USER_CHOICE
]


@click.group(cls=TmrGroup, examples=_SYNC_EXAMPLES)
def sync() -> None:
    """Inspect and repair timer sync between devices."""


@sync.command(
    examples="""\
  tmrctl sync status
  tmrctl --json sync status"""
)
@click.pass_obj
def status(app: AppContext) -> None:
    """Show connection state, pending writes, and parked conflicts."""
    app.emit(app.timer.sync_status())


@sync.command(examples="  tmrctl sync reconcile")
@click.pass_obj
def reconcile(app: AppContext) -> None:
    """Push offline changes and re-check local state against the store."""
    app.emit(app.timer.reconcile())


@sync.command(
    examples="""\
  tmrctl sync resolve 4f1c2a server_wins
  tmrctl sync resolve 4f1c2a merge"""
)
@click.argument("conflict_id")
@click.argument("strategy", type=click.Choice(_STRATEGIES))
@click.pass_obj
def resolve(app: AppContext, conflict_id: str, strategy: str) -> None:
    """Settle a conflict parked for a user choice."""
    app.emit(app.timer.resolve(conflict_id, strategy))
