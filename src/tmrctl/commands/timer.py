"""Command group: timer lifecycle for the current user."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import click

from tmrctl.commands._base import TmrGroup

if TYPE_CHECKING:
    from tmrctl.commands._context import AppContext

_TIMER_EXAMPLES = """\
  tmrctl timer start web-app LOGIN-12 --minutes 90 --title "Login form"
  tmrctl timer pause
  tmrctl timer resume
  tmrctl timer stop --notes "Form done" --completed
  tmrctl timer status
  tmrctl timer history --limit 5
  tmrctl timer watch --interval 5"""


@click.group(cls=TmrGroup, examples=_TIMER_EXAMPLES)
def timer() -> None:
    """Start, pause, resume, and stop the work timer."""


@timer.command(
    examples="""\
  tmrctl timer start web-app LOGIN-12
  tmrctl timer start web-app LOGIN-12 --minutes 90
  tmrctl --json timer start web-app LOGIN-12 --title "Login form" """
)
@click.argument("project_id")
@click.argument("task_id")
@click.option(
    "-m",
    "--minutes",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Allocated time in minutes.",
)
@click.option("--title", "task_title", default=None, help="Task title shown in status.")
@click.pass_obj
def start(
    app: AppContext,
    project_id: str,
    task_id: str,
    minutes: float | None,
    task_title: str | None,
) -> None:
    """Start timing PROJECT_ID/TASK_ID."""
    allocated = round(minutes * 60) if minutes is not None else None
    app.emit(
        app.timer.start(project_id, task_id, allocated_seconds=allocated, task_title=task_title)
    )


@timer.command(examples="  tmrctl timer pause")
@click.pass_obj
def pause(app: AppContext) -> None:
    """Pause the running timer (spends one pause)."""
    app.emit(app.timer.pause())


@timer.command(examples="  tmrctl timer resume")
@click.pass_obj
def resume(app: AppContext) -> None:
    """Resume the paused timer."""
    app.emit(app.timer.resume())


@timer.command(
    examples="""\
  tmrctl timer stop
  tmrctl timer stop --notes "Handed over to QA"
  tmrctl timer stop --completed"""
)
@click.option("--notes", default=None, help="Notes stored with the time log.")
@click.option("--completed", is_flag=True, help="Mark the task as completed.")
@click.pass_obj
def stop(app: AppContext, notes: str | None, completed: bool) -> None:
    """Stop the timer and record its time log."""
    app.emit(app.timer.stop(notes=notes, completed=completed))


@timer.command(
    examples="""\
  tmrctl timer status
  tmrctl -q timer status
  tmrctl --json timer status"""
)
@click.pass_obj
def status(app: AppContext) -> None:
    """Show the current timer, pause budget, and conflicts."""
    app.emit(app.timer.status(poll=True))


@timer.command(
    examples="""\
  tmrctl timer history
  tmrctl -v timer history --limit 50"""
)
@click.option("--limit", type=click.IntRange(min=1), default=20, help="Maximum sessions to list.")
@click.pass_obj
def history(app: AppContext, limit: int) -> None:
    """List finished sessions, newest first."""
    app.emit(app.timer.history(limit=limit))


@timer.command(
    examples="""\
  tmrctl timer assign web-app LOGIN-12
  tmrctl timer assign web-app LOGIN-12 --revoke"""
)
@click.argument("project_id")
@click.argument("task_id")
@click.option("--revoke", is_flag=True, help="Remove the assignment instead.")
@click.pass_obj
def assign(app: AppContext, project_id: str, task_id: str, revoke: bool) -> None:
    """Allow the current user to time PROJECT_ID/TASK_ID."""
    app.emit(app.timer.assign(project_id, task_id, revoke=revoke))


@timer.command(
    examples="""\
  tmrctl timer watch
  tmrctl -q timer watch --interval 10
  tmrctl timer watch --count 3"""
)
@click.option(
    "--interval",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds between refreshes (default: [timer] tick_interval_seconds).",
)
@click.option("--count", type=click.IntRange(min=1), default=None, help="Stop after N refreshes.")
@click.pass_obj
def watch(app: AppContext, interval: float | None, count: int | None) -> None:
    """Follow the timer, ticking and applying remote changes until it ends."""
    if interval is None:
        interval = app.settings.timer.tick_interval_seconds
    refreshes = 0
    while True:
        result = app.timer.status(poll=True)
        app.emit(result)
        refreshes += 1
        if count is not None and refreshes >= count:
            break
        if result.data.get("key") is None or result.data.get("status") not in ("running", "paused"):
            break
        time.sleep(interval)
