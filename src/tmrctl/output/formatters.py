"""Rich/JSON output helpers.

The CLI renders ServiceResult for humans (Rich panels and tables),
for scripts (``--quiet``), or for machines (``--json``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from tmrctl.output.renderers import render_quiet, render_result

if TYPE_CHECKING:
    from tmrctl.services.result import ServiceResult


class OutputSettings(BaseModel):
    """Output-mode flags resolved from the global CLI options."""

    model_config = {"frozen": True}

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False


def format_result(result: ServiceResult, *, settings: OutputSettings | None = None) -> str:
    """Format a ServiceResult for display in the requested mode."""
    settings = settings or OutputSettings()
    if settings.json_output:
        return result.model_dump_json(indent=2)
    if settings.quiet:
        return render_quiet(result)
    return render_result(result, verbose=settings.verbose)
