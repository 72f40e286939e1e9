"""Lossy striped buffers that batch key accesses before handing them on."""

from __future__ import annotations

import queue
from typing import Protocol


class RingConsumer(Protocol):
    """Receives full batches; returns False when it drops the batch."""

    def push(self, keys: list[int]) -> bool: ...


class RingStripe:
    """A single, not thread-safe buffer that drains into a consumer when full."""

    def __init__(self, consumer: RingConsumer, capacity: int) -> None:
        self.consumer = consumer
        self.capacity = int(capacity)
        self.data: list[int] = []

    def push(self, item: int) -> None:
        """Append an item, handing the batch to the consumer once full."""
        self.data.append(item)
        if len(self.data) >= self.capacity:
            if self.consumer.push(self.data):
                self.data = []
            else:
                self.data.clear()


class RingBuffer:
    """A pool of stripes shared between threads to lower contention."""

    def __init__(self, consumer: RingConsumer, capacity: int) -> None:
        self._consumer = consumer
        self._capacity = capacity
        self._pool: queue.SimpleQueue[RingStripe] = queue.SimpleQueue()

    def push(self, item: int) -> None:
        """Add an item to a free stripe, creating one if none is idle."""
        try:
            stripe = self._pool.get_nowait()
        except queue.Empty:
            stripe = RingStripe(self._consumer, self._capacity)
        stripe.push(item)
        self._pool.put(stripe)