"""Notifier registration.

Notifiers come from two places: the built-in
:class:`~tmrctl.plugins.builtins.log_notifier.LogNotifier`, and installed
packages that declare a ``tmrctl.plugins`` entry point.
"""

from __future__ import annotations

import logging

import pluggy

from tmrctl.plugins.hookspecs import TmrctlHookSpec

PROJECT_NAME = "tmrctl"
ENTRYPOINT_GROUP = "tmrctl.plugins"

logger = logging.getLogger(__name__)


class PluginManager:
    """pluggy manager preloaded with the timer notification hookspecs."""

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(TmrctlHookSpec)

    def load_entrypoints(self) -> int:
        """Register notifiers from installed packages; returns how many loaded."""
        loaded = self._pm.load_setuptools_entrypoints(ENTRYPOINT_GROUP)
        if loaded:
            logger.debug("Loaded %d notifier(s) from %s entry points", loaded, ENTRYPOINT_GROUP)
        return loaded

    def register_plugin(self, plugin: object, name: str | None = None) -> None:
        """Register a notifier instance directly (e.g. the built-in one)."""
        resolved_name = name or plugin.__class__.__name__
        self._pm.register(plugin, name=resolved_name)
        logger.debug("Registered notifier: %s", resolved_name)

    def implements(self, hook_name: str) -> bool:
        """Whether any registered notifier handles *hook_name*."""
        caller = getattr(self._pm.hook, hook_name, None)
        return caller is not None and bool(caller.get_hookimpls())

    @property
    def hook(self) -> pluggy.HookRelay:
        return self._pm.hook

    def get_plugins(self) -> list[object]:
        return list(self._pm.get_plugins())

    def list_plugin_names(self) -> list[str]:
        return [self._pm.get_name(p) or p.__class__.__name__ for p in self._pm.get_plugins()]
