"""Admission (TinyLFU) and eviction (sampled LFU) policy for the cache."""

from __future__ import annotations

import queue
import sys
import threading

from .bloom import BloomFilter
from .item import Item
from .metrics import MetricType, Metrics
from .sketch import CountMinSketch

LFU_SAMPLE = 5
_STOP = object()


def _record(metrics: Metrics | None, metric: MetricType, key: int, delta: int) -> None:
    if metrics is not None:
        metrics.add(metric, key, delta)


class TinyLFU:
    """Access-frequency estimator: a doorkeeper Bloom filter before a sketch.

    Not thread-safe.
    """

    def __init__(self, num_counters: int) -> None:
        self.freq = CountMinSketch(num_counters)
        self.door = BloomFilter(float(num_counters), 0.01)
        self.incrs = 0
        self.reset_at = num_counters

    def push(self, keys) -> None:
        """Record an access for every key."""
        for key in keys:
            self.increment(key)

    def estimate(self, key: int) -> int:
        """Estimated number of recent accesses of a key."""
        hits = self.freq.estimate(key)
        if self.door.has(key):
            hits += 1
        return hits

    def increment(self, key: int) -> None:
        """Record one access, ageing all counts once enough have been seen."""
        if not self.door.add_if_not_has(key):
            self.freq.increment(key)
        self.incrs += 1
        if self.incrs >= self.reset_at:
            self.reset()

    def reset(self) -> None:
        """Clear the doorkeeper and halve the sketch counters."""
        self.incrs = 0
        self.door.clear()
        self.freq.reset()

    def clear(self) -> None:
        """Forget every access."""
        self.incrs = 0
        self.door.clear()
        self.freq.clear()


class SampledLFU:
    """Tracks the cost of every admitted key against a maximum total cost."""

    def __init__(self, max_cost: int) -> None:
        self.max_cost = max_cost
        self.used = 0
        self.metrics: Metrics | None = None
        self.key_costs: dict[int, int] = {}

    def room_left(self, cost: int) -> int:
        """Capacity remaining after adding an item of ``cost``; may be negative."""
        return self.max_cost - (self.used + cost)

    def fill_sample(self, sample: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """Top ``sample`` up to LFU_SAMPLE (key, cost) pairs and return it."""
        if len(sample) >= LFU_SAMPLE:
            return sample
        for pair in self.key_costs.items():
            sample.append(pair)
            if len(sample) >= LFU_SAMPLE:
                break
        return sample

    def delete(self, key: int) -> None:
        """Drop a key and release its cost."""
        cost = self.key_costs.pop(key, None)
        if cost is None:
            return
        self.used -= cost
        _record(self.metrics, MetricType.COST_EVICT, key, cost)
        _record(self.metrics, MetricType.KEY_EVICT, key, 1)

    def add(self, key: int, cost: int) -> None:
        """Track a key with the given cost."""
        self.key_costs[key] = cost
        self.used += cost

    def update_if_has(self, key: int, cost: int) -> bool:
        """Change the cost of a tracked key; return False if it is unknown."""
        prev = self.key_costs.get(key)
        if prev is None:
            return False
        _record(self.metrics, MetricType.KEY_UPDATE, key, 1)
        if cost != prev:
            _record(self.metrics, MetricType.COST_ADD, key, cost - prev)
        self.used += cost - prev
        self.key_costs[key] = cost
        return True

    def clear(self) -> None:
        """Forget every key."""
        self.used = 0
        self.key_costs = {}


class Policy:
    """Decides which items are admitted and which are evicted.

    Access batches pushed through :meth:`push` are applied to the admission
    estimator by a background thread; a full queue drops the batch.
    """

    def __init__(self, num_counters: int, max_cost: int) -> None:
        self.admit = TinyLFU(num_counters)
        self.evict = SampledLFU(max_cost)
        self.metrics: Metrics | None = None
        self.is_closed = False
        self._lock = threading.Lock()
        self._items: queue.Queue = queue.Queue(maxsize=3)
        self._worker = threading.Thread(target=self._process_items, daemon=True)
        self._worker.start()

    def _process_items(self) -> None:
        while True:
            keys = self._items.get()
            if keys is _STOP:
                return
            with self._lock:
                self.admit.push(keys)

    def collect_metrics(self, metrics: Metrics) -> None:
        """Report policy events to ``metrics``."""
        self.metrics = metrics
        self.evict.metrics = metrics

    def push(self, keys: list[int]) -> bool:
        """Queue a batch of accessed keys; return False if it was dropped."""
        if self.is_closed:
            return False
        if not keys:
            return True
        try:
            self._items.put_nowait(keys)
        except queue.Full:
            _record(self.metrics, MetricType.DROP_GETS, keys[0], len(keys))
            return False
        _record(self.metrics, MetricType.KEEP_GETS, keys[0], len(keys))
        return True

    def add(self, key: int, cost: int) -> tuple[list[Item], bool]:
        """Try to admit a key.

        Returns the items evicted to make room and whether the key was
        admitted. An existing key only has its cost updated and is reported
        as not added.
        """
        with self._lock:
            if cost > self.evict.max_cost:
                return [], False
            if self.evict.update_if_has(key, cost):
                return [], False

            room = self.evict.room_left(cost)
            if room >= 0:
                self.evict.add(key, cost)
                _record(self.metrics, MetricType.COST_ADD, key, cost)
                return [], True

            incoming_hits = self.admit.estimate(key)
            sample: list[tuple[int, int]] = []
            victims: list[Item] = []
            while room < 0:
                sample = self.evict.fill_sample(sample)
                min_key, min_hits, min_index, min_cost = 0, sys.maxsize, 0, 0
                for index, (sample_key, sample_cost) in enumerate(sample):
                    hits = self.admit.estimate(sample_key)
                    if hits < min_hits:
                        min_key, min_hits, min_index, min_cost = (
                            sample_key,
                            hits,
                            index,
                            sample_cost,
                        )
                if incoming_hits < min_hits:
                    _record(self.metrics, MetricType.REJECT_SETS, key, 1)
                    return victims, False
                self.evict.delete(min_key)
                sample[min_index] = sample[-1]
                sample.pop()
                victims.append(Item(key=min_key, conflict=0, cost=min_cost))
                room = self.evict.room_left(cost)

            self.evict.add(key, cost)
            _record(self.metrics, MetricType.COST_ADD, key, cost)
            return victims, True

    def has(self, key: int) -> bool:
        """Return True if the key is tracked."""
        with self._lock:
            return key in self.evict.key_costs

    def delete(self, key: int) -> None:
        """Stop tracking a key."""
        with self._lock:
            self.evict.delete(key)

    def capacity(self) -> int:
        """Remaining cost capacity."""
        with self._lock:
            return self.evict.max_cost - self.evict.used

    def update(self, key: int, cost: int) -> None:
        """Change the cost of a tracked key."""
        with self._lock:
            self.evict.update_if_has(key, cost)

    def cost(self, key: int) -> int:
        """Cost of a tracked key, or -1 if it is not tracked."""
        with self._lock:
            return self.evict.key_costs.get(key, -1)

    def clear(self) -> None:
        """Forget all keys and access counts."""
        with self._lock:
            self.admit.clear()
            self.evict.clear()

    def close(self) -> None:
        """Stop the background thread; further pushes are refused."""
        if self.is_closed:
            return
        self._items.put(_STOP)
        self._worker.join()
        self.is_closed = True

    def max_cost(self) -> int:
        """Current maximum total cost."""
        return self.evict.max_cost

    def update_max_cost(self, max_cost: int) -> None:
        """Change the maximum total cost."""
        self.evict.max_cost = max_cost