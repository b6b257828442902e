"""AppContext — shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``.  Provides lazy Workspace and TimerService
initialization and centralized result emission (stdout/stderr routing
+ exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from tmrctl.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from tmrctl.config.settings import TmrSettings
    from tmrctl.infrastructure.workspace import Workspace
    from tmrctl.services.result import ServiceResult
    from tmrctl.services.timer import TimerService


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The workspace is created on first use so ``--help`` and ``--version``
    never open the database.
    """

    def __init__(self, settings: TmrSettings) -> None:
        self.settings = settings
        self._workspace: Workspace | None = None
        self._timer: TimerService | None = None

        from tmrctl.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

    @property
    def workspace(self) -> Workspace:
        """The workspace (created lazily on first access)."""
        if self._workspace is None:
            from tmrctl.infrastructure.workspace import Workspace

            self._workspace = Workspace(self.settings)
            self._workspace.init_notifications(sync=self.settings.sync_dispatch)
        return self._workspace

    @property
    def timer(self) -> TimerService:
        """Timer operations for the effective user."""
        if self._timer is None:
            from tmrctl.config.logging import bind_writer
            from tmrctl.services.timer import TimerService

            self._timer = TimerService(self.workspace)
            bind_writer(self._timer.user_id, self.workspace.device_id)
        return self._timer

    def close(self) -> None:
        """Save the outbox, flush notifications and release the database."""
        if self._timer is not None:
            from tmrctl.config.logging import clear_writer

            self._timer.close()
            self._timer = None
            clear_writer()
        if self._workspace is not None:
            self._workspace.close()
            self._workspace = None

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success: writes to stdout; warnings go to stderr so they don't
          pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            # In JSON mode, warnings are already in the serialized payload.
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
