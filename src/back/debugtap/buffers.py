"""Replay buffers for captured activity.

One append-only buffer per log channel plus one for request exchanges.
Insertion order is replay order. By default nothing is ever pruned;
``max_items`` is the opt-in cap for long-running hosts (drop oldest
past N).

Buffers hold no lock of their own: every append and every replay runs
inside the broadcast hub's exclusive section, which is what keeps
"appended" and "fanned out" atomic with respect to new observers.
"""
from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .observability.metrics import BUFFER_EVICTIONS
from .recorder import Channel
from .wire import TOPIC_ERROR, TOPIC_LOG, TOPIC_REQUEST, TOPIC_WARN, Envelope

if TYPE_CHECKING:
    from .hub import Observer


class RingBuffer:
    """In-order append log, optionally capped."""

    def __init__(self, topic: str, max_items: int | None = None) -> None:
        if max_items is not None and max_items < 1:
            raise ValueError(f'max_items must be >= 1 or None, got {max_items}')
        self.topic = topic
        self.max_items = max_items
        self._items: deque = deque(maxlen=max_items)
        self.evicted = 0

    def append(self, item: Any) -> None:
        """Add an item at the tail. O(1), never blocks."""
        if self.max_items is not None and len(self._items) == self.max_items:
            self.evicted += 1
            BUFFER_EVICTIONS.labels(topic=self.topic).inc()
        self._items.append(item)

    def replay_into(self, observer: Observer) -> bool:
        """Offer every buffered item to one observer, oldest first.

        Returns False as soon as the observer reports itself dead.
        The buffer is not modified.
        """
        for item in self._items:
            if not observer.offer(Envelope(self.topic, item.to_dict())):
                return False
        return True

    def snapshot(self) -> tuple:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(tuple(self._items))


@dataclass
class BufferSet:
    """The four buffers owned by one engine."""
    max_items: int | None = None
    log: RingBuffer = field(init=False)
    warn: RingBuffer = field(init=False)
    error: RingBuffer = field(init=False)
    exchanges: RingBuffer = field(init=False)

    def __post_init__(self) -> None:
        self.log = RingBuffer(TOPIC_LOG, self.max_items)
        self.warn = RingBuffer(TOPIC_WARN, self.max_items)
        self.error = RingBuffer(TOPIC_ERROR, self.max_items)
        self.exchanges = RingBuffer(TOPIC_REQUEST, self.max_items)

    def for_channel(self, channel: Channel) -> RingBuffer:
        return {
            Channel.LOG: self.log,
            Channel.WARN: self.warn,
            Channel.ERROR: self.error,
        }[channel]

    def for_topic(self, topic: str) -> RingBuffer | None:
        for buffer in self.replay_order():
            if buffer.topic == topic:
                return buffer
        return None

    def replay_order(self) -> list[RingBuffer]:
        """Buffers in the order a new observer receives them."""
        return [self.log, self.warn, self.error, self.exchanges]
