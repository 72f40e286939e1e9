"""Bucketed bookkeeping of when cache entries expire."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Callable

from .item import Item

if TYPE_CHECKING:
    from .policy import Policy
    from .store import ShardedMap

BUCKET_DURATION_SECS = 5


def storage_bucket(expiration: float, bucket_seconds: int) -> int:
    """Number of the bucket an entry expiring at ``expiration`` is kept in."""
    return int(expiration // bucket_seconds) + 1


def cleanup_bucket(now: float, bucket_seconds: int) -> int:
    """Number of the bucket that is safe to clean at time ``now``.

    It always lags the storage bucket by one, so that no entry that may not
    have expired yet is removed.
    """
    return storage_bucket(now, bucket_seconds) - 1


class ExpirationMap:
    """Maps bucket numbers to the keys (with their conflict hashes) expiring in them."""

    def __init__(self, bucket_seconds: int = BUCKET_DURATION_SECS) -> None:
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        self.bucket_seconds = bucket_seconds
        self.buckets: dict[int, dict[int, int]] = {}
        self._lock = threading.Lock()

    def _bucket(self, expiration: float) -> int:
        return storage_bucket(expiration, self.bucket_seconds)

    def add(self, key: int, conflict: int, expiration: float | None) -> None:
        """Record a key expiring at ``expiration``; entries without one are ignored."""
        if expiration is None:
            return
        number = self._bucket(expiration)
        with self._lock:
            self.buckets.setdefault(number, {})[key] = conflict

    def update(
        self,
        key: int,
        conflict: int,
        old_expiration: float | None,
        new_expiration: float | None,
    ) -> None:
        """Move a key from the bucket of its old expiration to that of the new one."""
        with self._lock:
            if old_expiration is not None:
                old = self.buckets.get(self._bucket(old_expiration))
                if old is not None:
                    old.pop(key, None)
            if new_expiration is not None:
                self.buckets.setdefault(self._bucket(new_expiration), {})[key] = conflict

    def delete(self, key: int, expiration: float | None) -> None:
        """Forget a key that was recorded with ``expiration``."""
        if expiration is None:
            return
        number = self._bucket(expiration)
        with self._lock:
            bucket = self.buckets.get(number)
            if bucket is not None:
                bucket.pop(key, None)

    def cleanup(
        self,
        store: ShardedMap,
        policy: Policy,
        on_evict: Callable[[Item], None] | None,
    ) -> None:
        """Remove every entry of the bucket that has just completed.

        The entries are deleted from ``store`` and ``policy`` and reported
        to ``on_evict``. Meant to be called periodically.
        """
        with self._lock:
            now = time.time()
            keys = self.buckets.pop(cleanup_bucket(now, self.bucket_seconds), {})

        for key, conflict in keys.items():
            expiration = store.expiration(key)
            if expiration is not None and expiration > now:
                continue
            cost = policy.cost(key)
            policy.delete(key)
            _, value = store.delete(key, conflict)
            if on_evict is not None:
                on_evict(
                    Item(
                        key=key,
                        conflict=conflict,
                        value=value,
                        cost=cost,
                        expiration=expiration,
                    )
                )