"""Sharded, lock-protected hash map holding the cached values."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from .item import Item
from .ttl import BUCKET_DURATION_SECS, ExpirationMap

if TYPE_CHECKING:
    from .policy import Policy

NUM_SHARDS = 256


@dataclass(frozen=True)
class _Entry:
    key: int
    conflict: int
    value: Any
    expiration: float | None


def _conflicts(wanted: int, stored: int) -> bool:
    return wanted != 0 and wanted != stored


class LockedMap:
    """One shard: a dictionary guarded by a lock."""

    def __init__(self, expiration_map: ExpirationMap) -> None:
        self._lock = threading.Lock()
        self._em = expiration_map
        self.data: dict[int, _Entry] = {}

    def get(self, key: int, conflict: int) -> tuple[Any, bool]:
        """Return ``(value, True)`` for a live entry, else ``(None, False)``."""
        with self._lock:
            entry = self.data.get(key)
        if entry is None or _conflicts(conflict, entry.conflict):
            return None, False
        if entry.expiration is not None and time.time() > entry.expiration:
            return None, False
        return entry.value, True

    def expiration(self, key: int) -> float | None:
        """Expiration time of a key, or None if it has none or is absent."""
        with self._lock:
            entry = self.data.get(key)
        return None if entry is None else entry.expiration

    def set(self, item: Item | None) -> None:
        """Store an item; an existing key with another conflict hash is kept."""
        if item is None:
            return
        with self._lock:
            existing = self.data.get(item.key)
            if existing is not None:
                if _conflicts(item.conflict, existing.conflict):
                    return
                self._em.update(
                    item.key, item.conflict, existing.expiration, item.expiration
                )
            else:
                self._em.add(item.key, item.conflict, item.expiration)
            self.data[item.key] = _Entry(
                item.key, item.conflict, item.value, item.expiration
            )

    def delete(self, key: int, conflict: int) -> tuple[int, Any]:
        """Remove a key; return its conflict hash and value, or ``(0, None)``."""
        with self._lock:
            entry = self.data.get(key)
            if entry is None or _conflicts(conflict, entry.conflict):
                return 0, None
            if entry.expiration is not None:
                self._em.delete(key, entry.expiration)
            del self.data[key]
        return entry.conflict, entry.value

    def update(self, item: Item) -> tuple[Any, bool]:
        """Replace an existing entry; return ``(previous value, True)`` on success."""
        with self._lock:
            entry = self.data.get(item.key)
            if entry is None or _conflicts(item.conflict, entry.conflict):
                return None, False
            self._em.update(item.key, item.conflict, entry.expiration, item.expiration)
            self.data[item.key] = _Entry(
                item.key, item.conflict, item.value, item.expiration
            )
        return entry.value, True

    def clear(self, on_evict: Callable[[Item], None] | None) -> None:
        """Drop every entry, reporting each to ``on_evict`` if given."""
        with self._lock:
            if on_evict is not None:
                for entry in self.data.values():
                    on_evict(
                        Item(key=entry.key, conflict=entry.conflict, value=entry.value)
                    )
            self.data = {}


class ShardedMap:
    """A fixed number of :class:`LockedMap` shards chosen by key hash."""

    def __init__(self, bucket_seconds: int = BUCKET_DURATION_SECS) -> None:
        self.expiration_map = ExpirationMap(bucket_seconds)
        self.shards = [LockedMap(self.expiration_map) for _ in range(NUM_SHARDS)]

    def _shard(self, key: int) -> LockedMap:
        return self.shards[key % NUM_SHARDS]

    def get(self, key: int, conflict: int) -> tuple[Any, bool]:
        """Return ``(value, found)`` for a key."""
        return self._shard(key).get(key, conflict)

    def expiration(self, key: int) -> float | None:
        """Expiration time of a key, or None."""
        return self._shard(key).expiration(key)

    def set(self, item: Item | None) -> None:
        """Store an item; None is ignored."""
        if item is None:
            return
        self._shard(item.key).set(item)

    def delete(self, key: int, conflict: int) -> tuple[int, Any]:
        """Remove a key; return its conflict hash and value."""
        return self._shard(key).delete(key, conflict)

    def update(self, item: Item) -> tuple[Any, bool]:
        """Replace an existing entry; return ``(previous value, updated)``."""
        return self._shard(item.key).update(item)

    def cleanup(self, policy: Policy, on_evict: Callable[[Item], None] | None) -> None:
        """Remove entries whose time to live has passed."""
        self.expiration_map.cleanup(self, policy, on_evict)

    def clear(self, on_evict: Callable[[Item], None] | None) -> None:
        """Drop every entry in every shard."""
        for shard in self.shards:
            shard.clear(on_evict)