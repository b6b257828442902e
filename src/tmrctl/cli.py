"""Root CLI group for tmrctl with global flags and command registration."""

from __future__ import annotations

import click

from tmrctl import __version__
from tmrctl.commands import register_commands
from tmrctl.commands._context import AppContext
from tmrctl.config.models import check_user_id
from tmrctl.config.settings import TmrSettings


def _user_id_option(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    try:
        return check_user_id(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="tmrctl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option(
    "-u", "--user", "user_id", default=None, callback=_user_id_option, help="Act as this user."
)
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option(
    "--sync", "sync_dispatch", is_flag=True, help="Deliver notifications on the calling thread."
)
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    user_id: str | None,
    config_path: str | None,
    sync_dispatch: bool,
) -> None:
    """tmrctl — work timer with a pause budget and multi-device sync."""
    ctx.ensure_object(dict)
    flags: dict[str, object] = {
        "json_output": json_output,
        "quiet": quiet,
        "verbose": verbose,
        "log_json": log_json,
        "sync_dispatch": sync_dispatch,
    }
    if user_id is not None:
        flags["user_id"] = user_id
    settings = TmrSettings.from_cli(config_path=config_path, **flags)
    app = AppContext(settings)
    ctx.obj = app
    ctx.call_on_close(app.close)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
