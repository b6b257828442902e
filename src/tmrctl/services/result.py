"""ServiceResult and ServiceError — what every TimerService operation returns.

The shell never sees a :class:`~tmrctl.domain.errors.TimerError`: the
adapter turns it into ``ServiceResult(ok=False)`` whose ``error.code`` is
the exception's stable code (``ALREADY_ACTIVE``, ``CONFLICT_UNRESOLVED``,
...). Warnings ride along on both outcomes.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field


class ServiceError(BaseModel):
    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)


class ServiceResult(BaseModel):
    """Outcome of one shell-facing timer or sync operation.

    Attributes:
        ok: Whether the operation succeeded.
        op: Operation name, e.g. ``"timer_start"`` or ``"sync_resolve"``.
        data: Projection or report on success.
        warnings: Pause warnings, overtime, offline writes, notifier failures.
        error: Set when ``ok`` is False.
        meta: ``user_id`` and the notified events, when there were any.
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def failure(
        cls,
        op: str,
        code: str,
        message: str,
        *,
        detail: dict[str, Any] | None = None,
        warnings: Sequence[str] = (),
    ) -> ServiceResult:
        return cls(
            ok=False,
            op=op,
            warnings=list(warnings),
            error=ServiceError(code=code, message=message, detail=detail or {}),
        )
