"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO); the caller
extracts the text via ``get_output(console)``. Renderers are dispatched
by ``result.op`` in :func:`render_result`; unknown ops fall through to a
generic key-value renderer.
"""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tmrctl.output.console import create_console, get_output, style_for_status

if TYPE_CHECKING:
    from rich.console import Console

    from tmrctl.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich."""
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Minimal output for ``--quiet``: the timer status, or OK/ERROR."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"
    status = result.data.get("status")
    if status is not None:
        remaining = result.data.get("time_remaining_display")
        return f"{status} {remaining}" if remaining else str(status)
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    label = Text("OK", style="tmr.ok")
    op = Text(f"  {result.op}", style="tmr.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="tmr.key")
    if key == "id" or key.endswith("_id"):
        v = Text(str(value), style="tmr.id")
    elif key == "status":
        v = Text(str(value), style=style_for_status(str(value)))
    else:
        v = Text(str(value))
    console.print(k, v, end="")
    console.print()


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Acting user plus the notifications this operation sent, one per line."""
    if not result.meta:
        return
    console.print()
    if "user_id" in result.meta:
        _field(console, "user_id", result.meta["user_id"])
    events = result.meta.get("events") or []
    if events:
        console.print(Text("  notified:", style="tmr.key"))
    for event in events:
        console.print(Text(f"    {event['kind']:<22}", style="dim"), event["message"], sep="")


def _conflict_table(conflicts: list[dict[str, Any]]) -> Table:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("ID", style="tmr.id", no_wrap=True)
    table.add_column("Type", style="tmr.warning")
    table.add_column("Local")
    table.add_column("Remote")
    table.add_column("Detected", style="dim")
    for conflict in conflicts:
        table.add_row(
            str(conflict.get("id", "")),
            str(conflict.get("conflict_type", "")),
            f"{conflict.get('local', '')} ({conflict.get('local_status', '')})",
            f"{conflict.get('remote', '')} ({conflict.get('remote_status', '')})",
            str(conflict.get("detected_at", "")),
        )
    return table


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="tmr.error")
    op = Text(f"  {result.op}", style="tmr.op")
    code = Text(f" [{err.code}]" if err else "", style="dim")
    console.print(label, op, code, Text(" — "), msg)

    hint = _ERROR_HINTS.get(err.code) if err is not None else None
    if err is not None and hint:
        console.print(Text("  hint: ", style="dim"), hint.format_map(_Detail(err.detail)), sep="")

    if verbose and err and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            console.print(f"    {k}: {v}")


class _Detail(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return f"<{key}>"


# Next step for errors a user can fix from the shell.
_ERROR_HINTS: dict[str, str] = {
    "CONFLICT_UNRESOLVED": "tmrctl sync resolve {conflict_id} server_wins|local_wins|merge",
    "ALREADY_ACTIVE": "stop the running timer first: tmrctl timer stop",
    "ASSIGNMENT_DENIED": "tmrctl timer assign {project_id} {task_id}",
    "SYNC_TRANSPORT_ERROR": "check the store, then: tmrctl sync reconcile",
}


# ── Timer renderers ───────────────────────────────────────────────────


def _render_timer(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render the timer projection as a panel."""
    d = result.data
    status = str(d.get("status", "idle"))
    if d.get("key") is None:
        _status_line(console, result)
        _field(console, "status", status)
        return

    remaining = Text(str(d.get("time_remaining_display", "")))
    if d.get("overtime"):
        remaining = Text(f"{d.get('time_remaining_display', '')} (overtime)", style="tmr.overtime")

    lines = Text()
    lines.append("status:    ", style="tmr.key")
    lines.append(status, style=style_for_status(status))
    lines.append("\nelapsed:   ", style="tmr.key")
    lines.append(str(d.get("elapsed_display", "")))
    lines.append("\nremaining: ", style="tmr.key")
    lines.append_text(remaining)

    pause = d.get("pause_info") or {}
    lines.append("\npauses:    ", style="tmr.key")
    lines.append(
        f"{pause.get('pause_count', 0)} used, {pause.get('pauses_left', 0)} left"
        f" ({pause.get('pause_time_used', 0)}s / "
        f"{pause.get('pause_time_used', 0) + pause.get('pause_time_left', 0)}s)"
    )
    if d.get("stop_reason"):
        lines.append("\nreason:    ", style="tmr.key")
        lines.append(str(d["stop_reason"]))
    if verbose and d.get("sync_version") is not None:
        lines.append("\nversion:   ", style="tmr.key")
        lines.append(str(d["sync_version"]))

    title = str(d.get("task_title") or d["key"])
    console.print(Panel(lines, title=title, border_style=style_for_status(status) or "dim", expand=False))

    conflicts = d.get("conflicts") or []
    if conflicts:
        console.print(Text(f"{len(conflicts)} unresolved conflict(s)", style="tmr.warning"))
        console.print(_conflict_table(conflicts))
    if verbose:
        _render_meta(console, result)


def _render_history(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Task", style="tmr.title")
    table.add_column("Ended", style="dim")
    table.add_column("Running", justify="right")
    table.add_column("Paused", justify="right")
    table.add_column("Pauses", justify="right")
    table.add_column("Reason")
    if verbose:
        table.add_column("Notes")

    for item in items:
        task = item.get("task_title") or f"{item.get('project_id')}/{item.get('task_id')}"
        reason = str(item.get("stop_reason", ""))
        row = [
            str(task),
            str(item.get("end_time", "")),
            str(item.get("running", "")),
            str(item.get("paused", "")),
            str(item.get("pause_count", 0)),
            reason,
        ]
        if verbose:
            row.append(str(item.get("notes") or ""))
        table.add_row(*row)

    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} sessions")


def _render_assign(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    for key in ("user_id", "project_id", "task_id", "assigned", "changed"):
        if key in result.data:
            _field(console, key, result.data[key])


def _render_sync_status(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    d = result.data
    for key in (
        "is_connected",
        "offline",
        "last_sync_time",
        "sync_error",
        "pending_writes",
        "undelivered_notifications",
    ):
        if key in d:
            _field(console, key, d[key])
    conflicts = d.get("conflicts") or []
    if conflicts:
        console.print()
        console.print(_conflict_table(conflicts))


# ── Generic fallback ──────────────────────────────────────────────────


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        if isinstance(value, (dict, list)):
            _field(console, key, _json.dumps(value, separators=(",", ":")))
        else:
            _field(console, key, value)
    if verbose:
        _render_meta(console, result)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    "timer_start": _render_timer,
    "timer_pause": _render_timer,
    "timer_resume": _render_timer,
    "timer_stop": _render_timer,
    "timer_status": _render_timer,
    "timer_history": _render_history,
    "timer_assign": _render_assign,
    "timer_revoke": _render_assign,
    "sync_status": _render_sync_status,
    "sync_reconcile": _render_timer,
    "sync_resolve": _render_timer,
}
