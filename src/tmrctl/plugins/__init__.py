"""Extension layer — notifiers via pluggy.

Notifiers are the built-in log notifier plus ``tmrctl.plugins`` entry points.
INVARIANT: Notifier failures are warnings, never errors.
"""

from tmrctl.plugins.dispatcher import NotificationDispatcher
from tmrctl.plugins.manager import PluginManager

__all__ = ["NotificationDispatcher", "PluginManager"]
