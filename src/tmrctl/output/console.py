"""Rich Console factory and theme for tmrctl output.

Creates Console instances that render to a StringIO buffer, preserving
the ``format_result() -> str`` contract. In non-TTY environments
(tests, pipes) Rich disables color codes automatically.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

TMR_THEME = Theme(
    {
        "tmr.ok": "bold green",
        "tmr.error": "bold red",
        "tmr.warning": "bold yellow",
        "tmr.op": "bold cyan",
        "tmr.key": "dim",
        "tmr.id": "bold blue",
        "tmr.title": "bold",
        "tmr.status.idle": "dim",
        "tmr.status.running": "bold green",
        "tmr.status.paused": "bold yellow",
        "tmr.status.completed": "bold blue",
        "tmr.status.stopped": "red",
        "tmr.overtime": "bold red",
    }
)

_STATUS_STYLES: dict[str, str] = {
    "idle": "tmr.status.idle",
    "running": "tmr.status.running",
    "paused": "tmr.status.paused",
    "completed": "tmr.status.completed",
    "stopped": "tmr.status.stopped",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=TMR_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 100,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    return _STATUS_STYLES.get(status, "")
