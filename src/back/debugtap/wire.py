"""Push-channel message envelope and JSON codec.

Every outbound frame is ``{"topic": ..., "data": ...}``. Values that JSON
cannot carry are degraded to a lossy representation here instead of
losing the whole event. The recorder also uses ``degrade`` to take a
detached copy of log arguments at call time.
"""
from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

from .observability.logging import get_logger

logger = get_logger(__name__)

# Outbound topics
TOPIC_LOG = 'console.log-output'
TOPIC_WARN = 'console.warn-output'
TOPIC_ERROR = 'console.error-output'
TOPIC_REQUEST = 'new-request'
TOPIC_ROUTES = 'routes'
TOPIC_FILE_TREE = 'file-tree'

CIRCULAR_MARKER = '[Circular]'
DEPTH_MARKER = '[Depth]'
MAX_DEPTH = 64
UNENCODABLE = '<unencodable>'


@dataclass(frozen=True)
class Envelope:
    """One message on the push channel."""
    topic: str
    data: Any

    def to_dict(self) -> dict:
        return {'topic': self.topic, 'data': self.data}


def _lossy_default(value: Any) -> Any:
    """json.dumps fallback for values it cannot encode natively."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, PurePath):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return repr(value)


def degrade(
    value: Any,
    _seen: frozenset[int] = frozenset(),
    _depth: int = 0,
) -> Any:
    """Rebuild ``value`` from JSON-safe parts.

    Reference cycles become ``[Circular]`` and anything nested deeper
    than ``MAX_DEPTH`` becomes ``[Depth]``. The result is a fresh copy,
    so later mutation of ``value`` does not show through.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if _depth >= MAX_DEPTH:
        return DEPTH_MARKER
    marker = id(value)
    if marker in _seen:
        return CIRCULAR_MARKER
    seen = _seen | {marker}
    depth = _depth + 1
    if isinstance(value, dict):
        return {str(k): degrade(v, seen, depth) for k, v in list(value.items())}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [degrade(v, seen, depth) for v in list(value)]
    try:
        return degrade(_lossy_default(value), seen, depth)
    except Exception:
        return f'<unrepresentable {type(value).__name__}>'


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to a JSON text frame.

    Never raises for odd payloads. A failed first pass falls back to a
    depth-bounded degraded copy; if that fails too the frame keeps its
    topic and carries ``<unencodable>`` as data.
    """
    message = envelope.to_dict()
    try:
        return json.dumps(message, default=_lossy_default)
    except Exception:
        pass
    try:
        return json.dumps(degrade(message), default=repr)
    except Exception:
        logger.warning('envelope_unencodable', topic=envelope.topic, exc_info=True)
        return json.dumps({'topic': envelope.topic, 'data': UNENCODABLE})
