"""A bounded, thread-safe cache with TinyLFU admission and sampled LFU eviction."""

from __future__ import annotations

import hashlib
import queue
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from .item import Item, ItemFlag
from .metrics import MetricType, Metrics
from .policy import Policy
from .ring import RingBuffer
from .store import ShardedMap
from .ttl import BUCKET_DURATION_SECS

SET_BUFFER_SIZE = 32 * 1024
# Bytes taken by one stored entry (key, conflict, value reference, expiration).
ITEM_SIZE = 56

_MASK64 = (1 << 64) - 1
_MAX_TRACKED_ADMISSIONS = 100_000
_WAKE = object()


def key_to_hash(key: Any) -> tuple[int, int]:
    """Return the key hash and conflict hash for a key.

    Integers are used as their own hash (reduced to 64 bits) with no
    conflict hash. Strings and bytes are hashed into two independent
    64-bit values. Other types raise :class:`TypeError`.
    """
    if isinstance(key, bool):
        key = int(key)
    if isinstance(key, int):
        return key & _MASK64, 0
    if isinstance(key, str):
        data = key.encode("utf-8")
    elif isinstance(key, (bytes, bytearray, memoryview)):
        data = bytes(key)
    else:
        raise TypeError(f"unsupported key type: {type(key).__name__}")
    digest = hashlib.blake2b(data, digest_size=16).digest()
    return int.from_bytes(digest[:8], "little"), int.from_bytes(digest[8:], "little")


def _record(metrics: Metrics | None, metric: MetricType, key: int, delta: int) -> None:
    if metrics is not None:
        metrics.add(metric, key, delta)


@dataclass
class Config:
    """Settings for a :class:`Cache`.

    ``num_counters``, ``max_cost`` and ``buffer_items`` must be non-zero.
    ``ttl_ticker_duration_in_sec`` sets the width of expiration buckets;
    expired entries are swept every half of it.
    """

    num_counters: int = 0
    max_cost: int = 0
    buffer_items: int = 0
    metrics: bool = False
    on_evict: Callable[[Item], None] | None = None
    on_reject: Callable[[Item], None] | None = None
    on_exit: Callable[[Any], None] | None = None
    key_to_hash: Callable[[Any], tuple[int, int]] | None = None
    cost: Callable[[Any], int] | None = None
    ignore_internal_cost: bool = False
    ttl_ticker_duration_in_sec: int = 0
    set_buffer_size: int = SET_BUFFER_SIZE


class Cache:
    """Thread-safe cache; writes are applied by a background thread.

    A successful :meth:`set` only means the write was buffered: the policy
    may still reject it. Call :meth:`wait` to make earlier writes visible.
    """

    def __init__(self, config: Config) -> None:
        if config.num_counters == 0:
            raise ValueError("num_counters can't be zero")
        if config.max_cost == 0:
            raise ValueError("max_cost can't be zero")
        if config.buffer_items == 0:
            raise ValueError("buffer_items can't be zero")
        if config.set_buffer_size <= 0:
            raise ValueError("set_buffer_size must be positive")
        bucket_seconds = config.ttl_ticker_duration_in_sec or BUCKET_DURATION_SECS

        self._config = config
        self.policy = Policy(config.num_counters, config.max_cost)
        self.store = ShardedMap(bucket_seconds)
        self._get_buf = RingBuffer(self.policy, config.buffer_items)
        self._set_buf: queue.Queue = queue.Queue(maxsize=config.set_buffer_size)
        self._key_to_hash = config.key_to_hash or key_to_hash
        self._cost = config.cost
        self._ignore_internal_cost = config.ignore_internal_cost
        self._cleanup_interval = bucket_seconds / 2
        self.metrics: Metrics | None = None
        if config.metrics:
            self.metrics = Metrics()
            self.policy.collect_metrics(self.metrics)

        self._closed = False
        self._control = threading.Lock()
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._start()

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        """True once :meth:`close` has run."""
        return self._closed

    def _on_exit(self, value: Any) -> None:
        if self._config.on_exit is not None and value is not None:
            self._config.on_exit(value)

    def _on_evict(self, item: Item) -> None:
        if self._config.on_evict is not None:
            self._config.on_evict(item)
        self._on_exit(item.value)

    def _on_reject(self, item: Item) -> None:
        if self._config.on_reject is not None:
            self._config.on_reject(item)
        self._on_exit(item.value)

    def _start(self) -> None:
        self._stop.clear()
        self._worker = threading.Thread(target=self._process_items, daemon=True)
        self._worker.start()

    def _halt(self) -> None:
        self._stop.set()
        try:
            self._set_buf.put_nowait(_WAKE)
        except queue.Full:
            pass
        if self._worker is not None:
            self._worker.join()
            self._worker = None

    def _discard_buffered(self) -> None:
        while True:
            try:
                item = self._set_buf.get_nowait()
            except queue.Empty:
                return
            if item is _WAKE:
                continue
            if item.waiter is not None:
                item.waiter.set()
                continue
            if item.flag is not ItemFlag.UPDATE:
                self._on_evict(item)

    def _reset(self) -> None:
        self._halt()
        self._discard_buffered()
        self.policy.clear()
        self.store.clear(self._on_evict)
        if self.metrics is not None:
            self.metrics.clear()

    def wait(self) -> None:
        """Block until every write buffered before this call has been applied."""
        if self._closed:
            return
        done = threading.Event()
        self._set_buf.put(Item(waiter=done))
        done.wait()

    def get(self, key: Any) -> tuple[Any, bool]:
        """Return ``(value, True)`` if the key is cached, else ``(None, False)``."""
        if self._closed or key is None:
            return None, False
        key_hash, conflict = self._key_to_hash(key)
        self._get_buf.push(key_hash)
        value, found = self.store.get(key_hash, conflict)
        _record(
            self.metrics, MetricType.HIT if found else MetricType.MISS, key_hash, 1
        )
        return value, found

    def set(self, key: Any, value: Any, cost: int) -> bool:
        """Buffer a write with no expiration; False means it was dropped."""
        return self.set_with_ttl(key, value, cost, 0)

    def set_with_ttl(
        self, key: Any, value: Any, cost: int, ttl: float | timedelta
    ) -> bool:
        """Buffer a write that expires after ``ttl`` seconds.

        A zero ``ttl`` never expires; a negative one discards the write.
        A cost of 0 is replaced by the configured cost function, if any.
        """
        if self._closed or key is None:
            return False
        if isinstance(ttl, timedelta):
            ttl = ttl.total_seconds()
        if ttl < 0:
            return False
        expiration = time.time() + ttl if ttl > 0 else None

        key_hash, conflict = self._key_to_hash(key)
        item = Item(
            key=key_hash,
            conflict=conflict,
            value=value,
            cost=cost,
            expiration=expiration,
            flag=ItemFlag.NEW,
        )
        # The store is updated at once so the new expiration takes effect
        # before the item could be swept.
        previous, updated = self.store.update(item)
        if updated:
            self._on_exit(previous)
            item.flag = ItemFlag.UPDATE
        try:
            self._set_buf.put_nowait(item)
        except queue.Full:
            if item.flag is ItemFlag.UPDATE:
                return True
            _record(self.metrics, MetricType.DROP_SETS, key_hash, 1)
            return False
        return True

    def delete(self, key: Any) -> None:
        """Remove a key, also cancelling any of its writes still buffered."""
        if self._closed or key is None:
            return
        key_hash, conflict = self._key_to_hash(key)
        _, previous = self.store.delete(key_hash, conflict)
        self._on_exit(previous)
        self._set_buf.put(Item(key=key_hash, conflict=conflict, flag=ItemFlag.DELETE))

    def get_ttl(self, key: Any) -> tuple[float, bool]:
        """Return the seconds a key has left and whether it is present.

        A present key without expiration gives ``(0.0, True)``.
        """
        if key is None:
            return 0.0, False
        key_hash, conflict = self._key_to_hash(key)
        _, found = self.store.get(key_hash, conflict)
        if not found:
            return 0.0, False
        expiration = self.store.expiration(key_hash)
        if expiration is None:
            return 0.0, True
        remaining = expiration - time.time()
        if remaining < 0:
            return 0.0, False
        return remaining, True

    def close(self) -> None:
        """Empty the cache and stop its background threads."""
        with self._control:
            if self._closed:
                return
            self._reset()
            self._closed = True
            self.policy.close()
            self._discard_buffered()

    def clear(self) -> None:
        """Drop every entry, buffered write and counter."""
        with self._control:
            if self._closed:
                return
            self._reset()
            self._start()

    def max_cost(self) -> int:
        """Current maximum total cost."""
        return self.policy.max_cost()

    def update_max_cost(self, max_cost: int) -> None:
        """Change the maximum total cost."""
        self.policy.update_max_cost(max_cost)

    def _process_items(self) -> None:
        admitted_at: dict[int, float] = {}

        def track_admission(key: int) -> None:
            if self.metrics is None:
                return
            admitted_at[key] = time.monotonic()
            while len(admitted_at) > _MAX_TRACKED_ADMISSIONS:
                admitted_at.pop(next(iter(admitted_at)))

        def on_evict(item: Item) -> None:
            started = admitted_at.pop(item.key, None)
            if started is not None and self.metrics is not None:
                self.metrics.track_eviction(int(time.monotonic() - started))
            self._on_evict(item)

        next_cleanup = time.monotonic() + self._cleanup_interval
        while not self._stop.is_set():
            timeout = next_cleanup - time.monotonic()
            if timeout <= 0:
                self.store.cleanup(self.policy, on_evict)
                next_cleanup = time.monotonic() + self._cleanup_interval
                continue
            try:
                item = self._set_buf.get(timeout=timeout)
            except queue.Empty:
                continue
            if item is _WAKE:
                continue
            self._apply(item, on_evict, track_admission)

    def _apply(
        self,
        item: Item,
        on_evict: Callable[[Item], None],
        track_admission: Callable[[int], None],
    ) -> None:
        if item.waiter is not None:
            item.waiter.set()
            return
        if item.cost == 0 and self._cost is not None and item.flag is not ItemFlag.DELETE:
            item.cost = self._cost(item.value)
        if not self._ignore_internal_cost:
            item.cost += ITEM_SIZE

        if item.flag is ItemFlag.NEW:
            victims, added = self.policy.add(item.key, item.cost)
            if added:
                self.store.set(item)
                _record(self.metrics, MetricType.KEY_ADD, item.key, 1)
                track_admission(item.key)
            else:
                self._on_reject(item)
            for victim in victims:
                victim.conflict, victim.value = self.store.delete(victim.key, 0)
                on_evict(victim)
        elif item.flag is ItemFlag.UPDATE:
            self.policy.update(item.key, item.cost)
        else:
            self.policy.delete(item.key)
            _, value = self.store.delete(item.key, item.conflict)
            self._on_exit(value)