"""Structured logging configuration for debugtap.

Configures structlog for the engine's own diagnostics. Only the
``debugtap`` logger tree is touched: it gets its own stderr handler and
stops propagating, so the host application's logging setup (and any
``ChannelLogHandler`` the host attached to its root logger) never sees
engine-internal records. Loggers are wrapped individually rather than
through ``structlog.configure`` so a host that uses structlog keeps its
own global configuration.

Usage::

    from debugtap.observability.logging import configure_logging, get_logger

    configure_logging()  # Called by DebugEngine when active
    logger = get_logger(__name__)
    logger.info("observer_connected", observers=2)
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar

import structlog

ENGINE_LOGGER_NAME = "debugtap"

# Context variable for the observer connection being served.
observer_id_ctx: ContextVar[str | None] = ContextVar("observer_id", default=None)

_configured = False


def _add_observer_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Inject the current observer_id from context into every log entry."""
    oid = observer_id_ctx.get()
    if oid is not None:
        event_dict["observer_id"] = oid
    return event_dict


_SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    _add_observer_id,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Attach a structlog-formatted stderr handler to the ``debugtap`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
            Defaults to DEBUGTAP_LOG_LEVEL env var or INFO.
        json_output: If True, emit JSON lines. If False, emit
            human-readable console output. Defaults to
            DEBUGTAP_LOG_FORMAT env var == "json".
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get("DEBUGTAP_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("DEBUGTAP_LOG_FORMAT", "console") == "json"

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr is the original, non-intercepted output channel.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    engine_logger = logging.getLogger(ENGINE_LOGGER_NAME)
    engine_logger.handlers.clear()
    engine_logger.addHandler(handler)
    engine_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    engine_logger.propagate = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger over the stdlib logger of the given name."""
    return structlog.wrap_logger(
        logging.getLogger(name or ENGINE_LOGGER_NAME),
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def is_engine_record(logger_name: str) -> bool:
    """True for records emitted by the engine's own loggers."""
    return logger_name == ENGINE_LOGGER_NAME or logger_name.startswith(
        ENGINE_LOGGER_NAME + "."
    )
