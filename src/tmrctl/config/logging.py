"""structlog setup for tmrctl.

Everything goes to stderr so ``--json`` output on stdout stays parseable.
Human mode uses the console renderer (colored on a TTY); ``--log-json``
writes one JSON object per line. The engine, listener and resolver log
dotted event names through structlog (``engine.offline_write``); the rest
of the package uses stdlib loggers that share the same formatter.

Once a command knows who is acting, :func:`bind_writer` tags every later
line with ``user_id`` and ``device_id`` so logs from several devices
sharing one store can be told apart.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Third-party loggers held at WARNING even with -v.
QUIET_LOGGERS = ("sqlalchemy", "pluggy")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(*, verbose: bool = False, log_json: bool = False) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        verbose: DEBUG for ``tmrctl.*`` loggers; otherwise WARNING and up.
        log_json: JSON lines instead of the console renderer.
    """
    pre_chain = _pre_chain()
    renderer: structlog.types.Processor
    if log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.WARNING)

    logging.getLogger("tmrctl").setLevel(logging.DEBUG if verbose else logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_writer(user_id: str, device_id: str) -> None:
    """Tag every following log line with the acting user and device."""
    structlog.contextvars.bind_contextvars(user_id=user_id, device_id=device_id)


def clear_writer() -> None:
    structlog.contextvars.unbind_contextvars("user_id", "device_id")
