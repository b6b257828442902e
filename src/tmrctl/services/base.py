"""BaseService — foundation for shell-facing services.

Every service receives a :class:`Workspace` at construction time. The
workspace owns the settings, the SQLite store, the authorizer and the
notification dispatcher.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tmrctl.domain.events import TimerEvent
    from tmrctl.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)


class BaseService:
    """Base for service-layer classes.

    Usage::

        class TimerService(BaseService):
            def history(self) -> ServiceResult:
                logs = self._workspace.store.list_logs(self.user_id)
                ...
    """

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    def _notify(
        self,
        event: TimerEvent,
        hook_name: str,
        payload: dict[str, Any],
        warnings: list[str],
    ) -> None:
        """Hand *event* to the notifiers. No-op if notifications are not initialized.

        INVARIANT: Notifier failures are warnings, never errors.
        """
        dispatcher = self._workspace.notifications
        if dispatcher is None:
            return
        try:
            dispatcher.publish(event, hook_name, payload)
        except Exception:
            logger.debug("Notification failed for %s", hook_name, exc_info=True)
            warnings.append(f"Notification failed for {hook_name}")
