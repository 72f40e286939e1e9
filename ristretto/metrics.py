"""Running counters describing how a cache instance has behaved."""

from __future__ import annotations

import threading
from collections import Counter
from enum import IntEnum

_MASK64 = (1 << 64) - 1


class MetricType(IntEnum):
    """Kinds of events counted by :class:`Metrics`."""

    HIT = 0
    MISS = 1
    KEY_ADD = 2
    KEY_UPDATE = 3
    KEY_EVICT = 4
    COST_ADD = 5
    COST_EVICT = 6
    DROP_SETS = 7
    REJECT_SETS = 8
    DROP_GETS = 9
    KEEP_GETS = 10


_NAMES = {
    MetricType.HIT: "hit",
    MetricType.MISS: "miss",
    MetricType.KEY_ADD: "keys-added",
    MetricType.KEY_UPDATE: "keys-updated",
    MetricType.KEY_EVICT: "keys-evicted",
    MetricType.COST_ADD: "cost-added",
    MetricType.COST_EVICT: "cost-evicted",
    MetricType.DROP_SETS: "sets-dropped",
    MetricType.REJECT_SETS: "sets-rejected",
    MetricType.DROP_GETS: "gets-dropped",
    MetricType.KEEP_GETS: "gets-kept",
}


def metric_name(metric: object) -> str:
    """Return the label used for a metric, or ``"unidentified"``."""
    try:
        return _NAMES[MetricType(metric)]
    except (ValueError, TypeError, KeyError):
        return "unidentified"


class Metrics:
    """Thread-safe 64-bit counters for cache events.

    Counters wrap modulo 2**64, so adding a negative delta subtracts.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(MetricType, 0)
        self._life: Counter[int] = Counter()

    def add(self, metric: MetricType, key_hash: int, delta: int) -> None:
        """Add ``delta`` to a counter; ``key_hash`` identifies the key involved."""
        metric = MetricType(metric)
        with self._lock:
            self._counts[metric] = (self._counts[metric] + delta) & _MASK64

    def get(self, metric: MetricType) -> int:
        """Return the current value of a counter."""
        with self._lock:
            return self._counts[MetricType(metric)]

    def hits(self) -> int:
        """Number of lookups that found a value."""
        return self.get(MetricType.HIT)

    def misses(self) -> int:
        """Number of lookups that found nothing."""
        return self.get(MetricType.MISS)

    def keys_added(self) -> int:
        """Number of new keys admitted."""
        return self.get(MetricType.KEY_ADD)

    def keys_updated(self) -> int:
        """Number of sets that updated an existing key."""
        return self.get(MetricType.KEY_UPDATE)

    def keys_evicted(self) -> int:
        """Number of keys evicted."""
        return self.get(MetricType.KEY_EVICT)

    def cost_added(self) -> int:
        """Sum of the costs of admitted items."""
        return self.get(MetricType.COST_ADD)

    def cost_evicted(self) -> int:
        """Sum of the costs of evicted items."""
        return self.get(MetricType.COST_EVICT)

    def sets_dropped(self) -> int:
        """Number of sets that never reached the internal buffer."""
        return self.get(MetricType.DROP_SETS)

    def sets_rejected(self) -> int:
        """Number of sets turned away by the admission policy."""
        return self.get(MetricType.REJECT_SETS)

    def gets_dropped(self) -> int:
        """Number of access records dropped internally."""
        return self.get(MetricType.DROP_GETS)

    def gets_kept(self) -> int:
        """Number of access records kept."""
        return self.get(MetricType.KEEP_GETS)

    def ratio(self) -> float:
        """Hits over all lookups, or 0.0 when there were none."""
        with self._lock:
            hits = self._counts[MetricType.HIT]
            misses = self._counts[MetricType.MISS]
        if hits == 0 and misses == 0:
            return 0.0
        return hits / (hits + misses)

    def track_eviction(self, seconds: int) -> None:
        """Record how many seconds an evicted key lived in the cache."""
        with self._lock:
            self._life[int(seconds)] += 1

    def life_expectancy_seconds(self) -> dict[int, int]:
        """Return a copy of the lifetime counts, keyed by seconds lived."""
        with self._lock:
            return dict(self._life)

    def clear(self) -> None:
        """Reset every counter."""
        with self._lock:
            self._counts = dict.fromkeys(MetricType, 0)
            self._life = Counter()

    def __str__(self) -> str:
        parts = [f"{metric_name(metric)}: {self.get(metric)}" for metric in MetricType]
        parts.append(f"gets-total: {self.hits() + self.misses()}")
        parts.append(f"hit-ratio: {self.ratio():.2f}")
        return " ".join(parts)