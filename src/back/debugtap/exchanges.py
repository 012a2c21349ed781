"""Request observer: captures one correlated exchange per HTTP request.

``RequestObserverMiddleware`` is pure ASGI rather than
``BaseHTTPMiddleware``: the exchange is finalized when the last
``http.response.body`` message has been handed to the server, which is
the "response fully flushed" signal. ``call_next`` returning only means
the handler produced a response object; streaming bodies and inner
middleware may still be running at that point.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .observability.logging import get_logger
from .observability.metrics import EXCHANGE_DURATION_SECONDS, EXCHANGES_CAPTURED

if TYPE_CHECKING:
    from .buffers import RingBuffer
    from .hub import BroadcastHub

logger = get_logger(__name__)

FORWARDED_FOR_HEADER = 'x-forwarded-for'


@dataclass(frozen=True)
class ResponseSummary:
    status_code: int
    headers: dict[str, str]
    duration_ms: float

    def to_dict(self) -> dict:
        return {
            'status_code': self.status_code,
            'headers': dict(self.headers),
            'duration_ms': self.duration_ms,
        }


@dataclass(frozen=True)
class RequestExchange:
    """One finalized request/response pair."""
    url: str
    full_url: str
    method: str
    headers: dict[str, str]
    body: Any
    params: dict[str, Any]
    query: dict[str, Any]
    started_at: datetime
    finished_at: datetime
    ip: str | None
    response: ResponseSummary
    session: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'full_url': self.full_url,
            'method': self.method,
            'headers': dict(self.headers),
            'body': self.body,
            'params': dict(self.params),
            'query': dict(self.query),
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat(),
            'ip': self.ip,
            'session': self.session,
            'response': self.response.to_dict(),
        }


# ---------------------------------------------------------------------------
# Field extraction helpers
# ---------------------------------------------------------------------------

def header_mapping(raw_headers: list[tuple[bytes, bytes]] | None) -> dict[str, str]:
    """Decode ASGI header pairs; repeated names are comma-joined."""
    result: dict[str, str] = {}
    for raw_name, raw_value in raw_headers or ():
        name = raw_name.decode('latin-1').lower()
        value = raw_value.decode('latin-1')
        result[name] = f'{result[name]}, {value}' if name in result else value
    return result


def parse_query(query_string: bytes | str) -> dict[str, Any]:
    """Single-valued keys map to a string, repeated keys to a list."""
    if isinstance(query_string, bytes):
        query_string = query_string.decode('latin-1')
    parsed = parse_qs(query_string, keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def parse_body(raw: bytes, content_type: str) -> Any:
    """Best-effort decode of a captured request body.

    JSON content types are parsed, urlencoded forms become a mapping,
    anything else is returned as text. Empty bodies are None.
    """
    if not raw:
        return None
    media_type = content_type.split(';', 1)[0].strip().lower()
    text = raw.decode('utf-8', errors='replace')
    if media_type == 'application/json' or media_type.endswith('+json'):
        try:
            return json.loads(text)
        except ValueError:
            return text
    if media_type == 'application/x-www-form-urlencoded':
        return parse_query(text)
    return text


def resolve_client_ip(headers: dict[str, str], client: tuple[str, int] | None) -> str | None:
    """Prefer the first X-Forwarded-For hop over the transport peer."""
    forwarded = headers.get(FORWARDED_FOR_HEADER, '').split(',', 1)[0].strip()
    if forwarded:
        return forwarded
    if client:
        return client[0]
    return None


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class _PendingExchange:
    """Mutable state for one in-flight request; frozen on finalize."""

    def __init__(self, scope: Scope, max_body_bytes: int) -> None:
        self.scope = scope
        self.started_at = datetime.now(timezone.utc)
        self.started_perf = time.perf_counter()
        self.max_body_bytes = max_body_bytes
        self.body = bytearray()
        self.body_truncated = False
        self.status_code: int | None = None
        self.response_headers: dict[str, str] = {}
        self.finalized = False

    def add_body_chunk(self, chunk: bytes) -> None:
        room = self.max_body_bytes - len(self.body)
        if room <= 0:
            self.body_truncated = self.body_truncated or bool(chunk)
            return
        if len(chunk) > room:
            self.body_truncated = True
        self.body.extend(chunk[:room])

    def build(self) -> RequestExchange:
        scope = self.scope
        finished_perf = time.perf_counter()
        finished_at = datetime.now(timezone.utc)
        headers = header_mapping(scope.get('headers'))
        path = scope.get('path', '')
        query_string = scope.get('query_string', b'')
        url = path + ('?' + query_string.decode('latin-1') if query_string else '')
        host = headers.get('host', '')
        raw_session = scope.get('session')
        body = parse_body(bytes(self.body), headers.get('content-type', ''))
        if self.body_truncated and isinstance(body, str):
            body += '...'
        return RequestExchange(
            url=url,
            full_url=f'{host}{url}',
            method=scope.get('method', ''),
            headers=headers,
            body=body,
            params=dict(scope.get('path_params') or {}),
            query=parse_query(query_string),
            started_at=self.started_at,
            finished_at=finished_at,
            ip=resolve_client_ip(headers, scope.get('client')),
            session=dict(raw_session) if isinstance(raw_session, dict) else None,
            response=ResponseSummary(
                status_code=self.status_code if self.status_code is not None else 500,
                headers=self.response_headers,
                duration_ms=round((finished_perf - self.started_perf) * 1000, 3),
            ),
        )


class RequestObserverMiddleware:
    """ASGI middleware that records a RequestExchange for every HTTP request.

    Installed by ``DebugEngine.pipe`` only when the engine is active;
    there is no disabled mode of this class. Non-HTTP scopes pass
    through untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        hub: BroadcastHub,
        buffer: RingBuffer,
        max_body_bytes: int = 1024 * 1024,
    ) -> None:
        self.app = app
        self.hub = hub
        self.buffer = buffer
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] != 'http':
            await self.app(scope, receive, send)
            return

        pending = _PendingExchange(scope, self.max_body_bytes)

        async def receive_wrapper() -> Message:
            message = await receive()
            if message['type'] == 'http.request':
                pending.add_body_chunk(message.get('body', b''))
            return message

        async def send_wrapper(message: Message) -> None:
            if message['type'] == 'http.response.start':
                pending.status_code = message['status']
                pending.response_headers = header_mapping(message.get('headers'))
            await send(message)
            if message['type'] == 'http.response.body' and not message.get('more_body', False):
                self._finalize(pending)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        finally:
            # Errors and client disconnects still complete the exchange.
            self._finalize(pending)

    def _finalize(self, pending: _PendingExchange) -> None:
        if pending.finalized:
            return
        pending.finalized = True
        try:
            exchange = pending.build()
            self.hub.publish(self.buffer, exchange)
            EXCHANGES_CAPTURED.labels(
                method=exchange.method, status=str(exchange.response.status_code),
            ).inc()
            EXCHANGE_DURATION_SECONDS.labels(method=exchange.method).observe(
                exchange.response.duration_ms / 1000,
            )
        except Exception:
            logger.exception('exchange_capture_failed', path=pending.scope.get('path'))
