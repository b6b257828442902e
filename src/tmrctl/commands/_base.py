"""Click classes that take an ``examples=`` block.

``tmrctl timer start --examples`` prints the block and exits before any
argument is parsed, so it works without a project or task id and never
opens the workspace.
"""

from __future__ import annotations

from typing import Any

import click


class _ExamplesMixin:
    """Adds an eager ``--examples`` flag when ``examples=`` is given."""

    params: list[click.Parameter]

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.examples = examples
        if examples:
            self.params.append(
                click.Option(
                    ["--examples"],
                    is_flag=True,
                    expose_value=False,
                    is_eager=True,
                    callback=self._show_examples,
                    help="Show usage examples.",
                )
            )

    def _show_examples(self, ctx: click.Context, _param: click.Parameter, value: bool) -> None:
        if value:
            click.echo(f"Examples for '{ctx.command_path}':\n\n{self.examples}")
            ctx.exit(0)


class TmrCommand(_ExamplesMixin, click.Command):
    pass


class TmrGroup(_ExamplesMixin, click.Group):
    """Group whose subcommands are :class:`TmrCommand` by default."""

    command_class = TmrCommand
