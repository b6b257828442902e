"""Workspace — owns the resources every timer service needs.

Constructed once at CLI startup from :class:`TmrSettings` and stored in
``click.Context.obj`` via :class:`~tmrctl.commands._context.AppContext`.
Services receive the Workspace through their :class:`BaseService`
constructor.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from tmrctl.domain.ports import AllowAllAuthorizer
from tmrctl.infrastructure.auth import SqlAuthorizer
from tmrctl.infrastructure.database.engine import init_database
from tmrctl.infrastructure.outbox import OUTBOX_DIRNAME, LocalOutbox
from tmrctl.infrastructure.store import SqlSessionStore

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from tmrctl.config.settings import TmrSettings
    from tmrctl.domain.clock import Clock
    from tmrctl.domain.ports import Authorizer
    from tmrctl.plugins.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

DEVICE_ID_FILENAME = "device_id"


class Workspace:
    """Database, store, outbox, authorizer, device identity and notifications."""

    def __init__(self, settings: TmrSettings, *, clock: Clock | None = None) -> None:
        self._settings = settings
        self._clock = clock
        self._engine: Engine = init_database(self.data_dir)
        self._store = SqlSessionStore(self._engine, clock=clock)
        self._assignments = SqlAuthorizer(self._engine, clock=clock)
        self._outbox = LocalOutbox(self.data_dir / OUTBOX_DIRNAME)
        self._device_id: str | None = settings.user.device_id
        self._notifications: NotificationDispatcher | None = None

    @property
    def settings(self) -> TmrSettings:
        return self._settings

    @property
    def clock(self) -> Clock | None:
        """Injected clock, or None for system time."""
        return self._clock

    @property
    def data_dir(self) -> Path:
        return self._settings.data_dir

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def store(self) -> SqlSessionStore:
        return self._store

    @property
    def assignments(self) -> SqlAuthorizer:
        return self._assignments

    @property
    def outbox(self) -> LocalOutbox:
        return self._outbox

    @property
    def authorizer(self) -> Authorizer:
        """Assignment checks only when ``[auth] require_assignment`` is set."""
        if self._settings.auth.require_assignment:
            return self._assignments
        return AllowAllAuthorizer()

    @property
    def device_id(self) -> str:
        """Stable per-workspace writer id, persisted on first use."""
        if self._device_id is None:
            path = self.data_dir / DEVICE_ID_FILENAME
            if path.is_file():
                self._device_id = path.read_text(encoding="utf-8").strip()
            if not self._device_id:
                self._device_id = uuid.uuid4().hex
                path.write_text(self._device_id + "\n", encoding="utf-8")
                logger.debug("Created device id %s", self._device_id)
        return self._device_id

    @property
    def notifications(self) -> NotificationDispatcher | None:
        """The notification dispatcher (None if not initialized)."""
        return self._notifications

    def init_notifications(self, *, sync: bool = False) -> None:
        """Register notifiers and wire the NotificationDispatcher.

        The built-in LogNotifier is always present; other notifiers come
        from ``tmrctl.plugins`` entry points.
        """
        from tmrctl.plugins.builtins.log_notifier import LogNotifier
        from tmrctl.plugins.dispatcher import NotificationDispatcher
        from tmrctl.plugins.manager import PluginManager

        pm = PluginManager()
        pm.load_entrypoints()
        pm.register_plugin(LogNotifier(), name="log-notifier")

        self._notifications = NotificationDispatcher(
            self._engine, pm, clock=self._clock, sync=sync
        )

    def close(self) -> None:
        if self._notifications is not None:
            self._notifications.shutdown()
            self._notifications = None
        self._engine.dispose()
