"""Prometheus metrics for debugtap.

Counts what the engine captures and how many observers it is feeding.
Exposed by the observer app at ``GET /metrics``.

Usage::

    from debugtap.observability.metrics import LOG_EVENTS_CAPTURED

    LOG_EVENTS_CAPTURED.labels(channel="warn").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Capture metrics
# ---------------------------------------------------------------------------

LOG_EVENTS_CAPTURED = Counter(
    "debugtap_log_events_total",
    "Log events captured by channel.",
    labelnames=["channel"],
    registry=REGISTRY,
)

EXCHANGES_CAPTURED = Counter(
    "debugtap_exchanges_total",
    "Request/response exchanges captured by method and status code.",
    labelnames=["method", "status"],
    registry=REGISTRY,
)

EXCHANGE_DURATION_SECONDS = Histogram(
    "debugtap_exchange_duration_seconds",
    "Observed request duration, start to response flushed.",
    labelnames=["method"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

BUFFER_EVICTIONS = Counter(
    "debugtap_buffer_evictions_total",
    "Items dropped from a capped replay buffer.",
    labelnames=["topic"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Observer metrics
# ---------------------------------------------------------------------------

OBSERVERS_CONNECTED = Gauge(
    "debugtap_observers_connected",
    "Number of observer connections currently attached to the hub.",
    registry=REGISTRY,
)

OBSERVERS_DROPPED = Counter(
    "debugtap_observers_dropped_total",
    "Observer connections dropped after a transport failure.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
