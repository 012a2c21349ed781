"""Observability infrastructure for debugtap itself.

Provides the engine's structured logging and Prometheus metrics. These
describe the engine, not the host: captured host activity lives in the
replay buffers.

Quick start::

    from debugtap.observability import configure_logging, get_logger
    from debugtap.observability.metrics import metrics_text

    configure_logging()
    logger = get_logger(__name__)
"""

from .logging import configure_logging, get_logger, observer_id_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "observer_id_ctx",
]
