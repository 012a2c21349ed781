"""Broadcast hub: replay for late joiners, live fan-out for everyone.

Observers never own buffered state. On connect the hub replays every
buffer in a fixed order (log, warn, error, exchanges, routes,
file-tree) and from then on offers each newly published item to every
connected observer.

Thread Safety:
    Log calls arrive from whatever thread the host runs handlers on,
    while observers live on the observer server's event loop. A single
    lock covers "append to buffer + offer to observers" and "register
    observer + replay", so a connecting observer sees every event
    exactly once: either in its replay or live, never both, never
    neither. Offers must therefore be non-blocking.
"""
from __future__ import annotations

import asyncio
import threading
import uuid
from contextlib import suppress
from typing import TYPE_CHECKING, Any, Callable, Protocol

from starlette.websockets import WebSocket

from .observability.logging import get_logger
from .observability.metrics import OBSERVERS_CONNECTED, OBSERVERS_DROPPED
from .wire import TOPIC_FILE_TREE, TOPIC_ROUTES, Envelope, encode

if TYPE_CHECKING:
    from .buffers import BufferSet, RingBuffer
    from .routes import RouteInventory

logger = get_logger(__name__)


class Observer(Protocol):
    """A connected client. ``offer`` must not block."""

    def offer(self, envelope: Envelope) -> bool:
        """Queue an envelope for delivery. False means the observer is gone."""
        ...


class BroadcastHub:
    """Owns the set of connected observers and the fan-out section."""

    def __init__(
        self,
        buffers: BufferSet,
        inventory: RouteInventory,
        file_tree: Callable[[], Any] | None = None,
    ) -> None:
        self._buffers = buffers
        self._inventory = inventory
        self._file_tree = file_tree
        self._observers: set[Observer] = set()
        self._lock = threading.RLock()

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def publish(self, buffer: RingBuffer, item: Any) -> None:
        """Append ``item`` to ``buffer`` and offer it to every observer."""
        with self._lock:
            buffer.append(item)
            if not self._observers:
                return
            envelope = Envelope(buffer.topic, item.to_dict())
            dead = [obs for obs in self._observers if not obs.offer(envelope)]
            for obs in dead:
                self._drop(obs)

    def connect(self, observer: Observer) -> bool:
        """Register an observer and replay all history into it.

        The file-tree walk happens before taking the lock; everything
        else is atomic with respect to publish(). Returns False if the
        observer died during replay (it is not registered then).
        """
        tree = self._snapshot_file_tree()
        with self._lock:
            for buffer in self._buffers.replay_order():
                if not buffer.replay_into(observer):
                    OBSERVERS_DROPPED.inc()
                    return False
            if not observer.offer(Envelope(TOPIC_ROUTES, self._inventory.to_payload())):
                OBSERVERS_DROPPED.inc()
                return False
            if not observer.offer(Envelope(TOPIC_FILE_TREE, tree)):
                OBSERVERS_DROPPED.inc()
                return False
            self._observers.add(observer)
            OBSERVERS_CONNECTED.inc()
        logger.info('observer_connected', observers=self.observer_count)
        return True

    def disconnect(self, observer: Observer) -> None:
        """Forget an observer. Buffers are untouched."""
        with self._lock:
            if observer not in self._observers:
                return
            self._observers.discard(observer)
            OBSERVERS_CONNECTED.dec()
        logger.info('observer_disconnected', observers=self.observer_count)

    def _drop(self, observer: Observer) -> None:
        self._observers.discard(observer)
        OBSERVERS_CONNECTED.dec()
        OBSERVERS_DROPPED.inc()
        logger.debug('observer_dropped')

    def _snapshot_file_tree(self) -> Any:
        if self._file_tree is None:
            return {}
        try:
            return self._file_tree()
        except Exception:
            logger.warning('file_tree_snapshot_failed', exc_info=True)
            return {}


class WebSocketObserver:
    """Observer backed by a WebSocket on the observer server's loop.

    ``offer`` may be called from any thread; envelopes are handed to the
    loop with ``call_soon_threadsafe`` so their order is the order the
    hub offered them. ``pump`` drains the queue onto the socket.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.observer_id = str(uuid.uuid4())
        self._websocket = websocket
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, envelope: Envelope) -> bool:
        if self._closed:
            return False
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, envelope)
        except RuntimeError:
            # Loop already closed.
            self._closed = True
            return False
        return True

    def close(self) -> None:
        self._closed = True

    async def pump(self) -> None:
        """Send queued envelopes until the socket fails or the task is cancelled."""
        try:
            while True:
                envelope = await self._queue.get()
                await self._websocket.send_text(encode(envelope))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug('observer_send_failed', exc_info=True)
            self._closed = True
            # Surface the failure to the client as a disconnect.
            with suppress(Exception):
                await self._websocket.close(code=1011)
        finally:
            self._closed = True
