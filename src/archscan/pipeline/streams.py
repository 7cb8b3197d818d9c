"""Closable broadcast streams connecting pipeline stages.

A BroadcastStream delivers every published item to every subscription,
so the sizing and scanning stages each see all fetched artifacts. Consumers
iterate their subscription and stop once the stream has been closed and
drained; nobody polls a counter.
"""

from __future__ import annotations

import queue
import threading
from typing import Generic, Iterator, List, TypeVar

T = TypeVar("T")

_CLOSED = object()


class StreamClosedError(RuntimeError):
    """Publish or subscribe on a stream that no longer accepts it."""


class Subscription(Generic[T]):
    """One consumer's view of a broadcast stream."""

    def __init__(self, stream_name: str, name: str) -> None:
        self.stream_name = stream_name
        self.name = name
        self._queue: "queue.Queue[object]" = queue.Queue()

    def _deliver(self, item: object) -> None:
        self._queue.put(item)

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def __repr__(self) -> str:
        return f"Subscription({self.stream_name!r}, {self.name!r})"


class BroadcastStream(Generic[T]):
    """Multi-producer stream fanned out to every subscription.

    All subscriptions must exist before the first publish; a late
    subscriber would silently miss items.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription[T]] = []
        self._closed = False
        self._published = 0

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def published(self) -> int:
        with self._lock:
            return self._published

    def subscribe(self, name: str) -> Subscription[T]:
        with self._lock:
            if self._closed or self._published:
                raise StreamClosedError(
                    f"Cannot subscribe to '{self.name}' after publishing started"
                )
            subscription: Subscription[T] = Subscription(self.name, name)
            self._subscriptions.append(subscription)
            return subscription

    def publish(self, item: T) -> None:
        with self._lock:
            if self._closed:
                raise StreamClosedError(f"Stream '{self.name}' is closed")
            for subscription in self._subscriptions:
                subscription._deliver(item)
            self._published += 1

    def close(self) -> None:
        """Mark the end of the stream; idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for subscription in self._subscriptions:
                subscription._deliver(_CLOSED)
