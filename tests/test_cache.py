import random
import threading
import time
from datetime import timedelta

import pytest

from ristretto.cache import ITEM_SIZE, Cache, Config, key_to_hash
from ristretto.item import Item
from ristretto.sim import new_zipfian


@pytest.fixture
def make_cache():
    caches = []

    def factory(**overrides):
        options = dict(
            num_counters=100,
            max_cost=10,
            buffer_items=64,
            ttl_ticker_duration_in_sec=1,
        )
        options.update(overrides)
        cache = Cache(Config(**options))
        caches.append(cache)
        return cache

    yield factory
    for cache in caches:
        cache.close()


def retry_set(cache, key, value, cost, ttl):
    for _ in range(200):
        if cache.set_with_ttl(key, value, cost, ttl):
            break
        time.sleep(0.01)
    else:
        raise AssertionError("set was never accepted")
    cache.wait()
    found_value, found = cache.get(key)
    assert found
    assert found_value == value


def test_key_to_hash_int():
    assert key_to_hash(5) == (5, 0)
    assert key_to_hash(-1) == ((1 << 64) - 1, 0)


def test_key_to_hash_strings_and_bytes():
    assert key_to_hash("abc") == key_to_hash(b"abc")
    assert key_to_hash("abc") != key_to_hash("abd")
    key_hash, conflict = key_to_hash("abc")
    assert key_hash != conflict


def test_key_to_hash_unsupported():
    with pytest.raises(TypeError):
        key_to_hash(1.5)


def test_cache_key_to_hash_calls(make_cache):
    calls = []

    def counting(key):
        calls.append(key)
        return key_to_hash(key)

    cache = make_cache(
        num_counters=10, max_cost=1000, ignore_internal_cost=True, key_to_hash=counting
    )
    assert cache.set(1, 1, 1)
    cache.wait()
    value, found = cache.get(1)
    assert found
    assert value == 1
    cache.delete(1)
    assert len(calls) == 3


def test_new_cache_errors():
    with pytest.raises(ValueError, match="num_counters"):
        Cache(Config(num_counters=0))
    with pytest.raises(ValueError, match="max_cost"):
        Cache(Config(num_counters=100, max_cost=0))
    with pytest.raises(ValueError, match="buffer_items"):
        Cache(Config(num_counters=100, max_cost=10, buffer_items=0))


def test_new_cache_ok(make_cache):
    cache = make_cache(metrics=True)
    assert cache.max_cost() == 10
    assert cache.metrics.hits() == 0


def test_update_max_cost(make_cache):
    cache = make_cache()
    assert cache.max_cost() == 10
    assert cache.set(1, 1, 1)
    cache.wait()
    assert cache.get(1) == (None, False)

    cache.update_max_cost(1000)
    assert cache.max_cost() == 1000
    assert cache.set(1, 1, 1)
    cache.wait()
    assert cache.get(1) == (1, True)


def test_multiple_close(make_cache):
    cache = make_cache(metrics=True)
    cache.close()
    cache.close()
    assert cache.closed


def test_set_after_close(make_cache):
    cache = make_cache(metrics=True)
    cache.close()
    assert not cache.set(1, 1, 1)


def test_clear_after_close(make_cache):
    cache = make_cache(metrics=True)
    cache.close()
    cache.clear()
    assert cache.get(1) == (None, False)


def test_get_after_close(make_cache):
    cache = make_cache(metrics=True)
    assert cache.set(1, 1, 1)
    cache.close()
    assert cache.get(1) == (None, False)


def test_delete_after_close(make_cache):
    cache = make_cache(metrics=True, max_cost=1000)
    assert cache.set(1, 1, 1)
    cache.close()
    cache.delete(1)
    assert cache.get(1) == (None, False)


def test_context_manager_closes():
    with Cache(Config(num_counters=100, max_cost=10, buffer_items=64)) as cache:
        assert not cache.closed
    assert cache.closed


def test_process_items(make_cache):
    lock = threading.Lock()
    evicted = set()

    def on_evict(item):
        with lock:
            evicted.add(item.key)

    cache = make_cache(ignore_internal_cost=True, cost=lambda value: value, on_evict=on_evict)

    assert cache.set(1, 1, 0)
    cache.wait()
    assert cache.policy.has(1)
    assert cache.policy.cost(1) == 1

    assert cache.set(1, 2, 0)
    cache.wait()
    assert cache.policy.cost(1) == 2

    cache.delete(1)
    cache.wait()
    assert cache.store.get(*key_to_hash(1)) == (None, False)
    assert not cache.policy.has(1)

    cache.set(2, 2, 3)
    cache.set(3, 3, 3)
    cache.set(4, 3, 3)
    cache.set(5, 3, 5)
    cache.wait()
    with lock:
        assert len(evicted) > 0


def test_cache_get(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)
    key, conflict = key_to_hash(1)
    cache.store.set(Item(key=key, conflict=conflict, value=1))
    assert cache.get(1) == (1, True)
    assert cache.get(2) == (None, False)
    assert cache.metrics.ratio() == 0.5
    assert cache.get(None) == (None, False)


def test_cache_set_update_visible_immediately(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)
    retry_set(cache, 1, 1, 1, 0)
    cache.set(1, 2, 2)
    assert cache.store.get(*key_to_hash(1)) == (2, True)


def test_cache_set_dropped_when_buffer_full(make_cache):
    entered = threading.Event()
    release = threading.Event()

    def cost(value):
        if value == "block":
            entered.set()
            release.wait(5)
        return 1

    cache = make_cache(
        max_cost=1000,
        ignore_internal_cost=True,
        metrics=True,
        cost=cost,
        set_buffer_size=2,
    )
    cache.store.set(Item(key=20, conflict=0, value="old"))
    try:
        assert cache.set(10, "block", 0)
        assert entered.wait(5)
        assert cache.set(11, "x", 1)
        assert cache.set(12, "x", 1)
        assert not cache.set(13, "x", 1)
        assert cache.metrics.sets_dropped() == 1
        # Updates of stored keys succeed even with a full buffer.
        assert cache.set(20, "new", 1)
        assert cache.store.get(20, 0) == ("new", True)
        assert cache.metrics.sets_dropped() == 1
    finally:
        release.set()
    cache.wait()
    assert cache.get(11) == ("x", True)


def test_set_none_key(make_cache):
    cache = make_cache()
    assert not cache.set(None, 1, 1)


def test_negative_ttl_is_discarded(make_cache):
    cache = make_cache(ignore_internal_cost=True)
    assert not cache.set_with_ttl(1, 1, 1, -1)
    cache.wait()
    assert cache.get(1) == (None, False)


def test_internal_cost(make_cache):
    cache = make_cache(metrics=True)
    cache.set_with_ttl(1, 1, 1, 0)
    cache.wait()
    assert cache.get(1) == (None, False)


def test_internal_cost_counts_toward_policy(make_cache):
    cache = make_cache(max_cost=1000)
    assert cache.set(1, 1, 1)
    cache.wait()
    assert cache.policy.cost(1) == 1 + ITEM_SIZE


def test_on_reject_and_on_exit(make_cache):
    rejected = []
    exited = []
    cache = make_cache(on_reject=lambda item: rejected.append(item.value), on_exit=exited.append)
    assert cache.set(1, "v", 1)
    cache.wait()
    assert rejected == ["v"]
    assert exited == ["v"]


def test_on_exit_on_delete(make_cache):
    exited = []
    cache = make_cache(max_cost=1000, ignore_internal_cost=True, on_exit=exited.append)
    retry_set(cache, 1, "a", 1, 0)
    cache.delete(1)
    cache.wait()
    assert exited == ["a"]


def test_recache_with_ttl(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)
    assert cache.set_with_ttl(1, 1, 1, 1.0)
    cache.wait()
    assert cache.get(1) == (1, True)
    time.sleep(1.1)
    assert cache.get(1) == (None, False)

    assert cache.set_with_ttl(1, 2, 1, timedelta(seconds=1))
    cache.wait()
    assert cache.get(1) == (2, True)


def test_set_with_ttl_evicts_and_overwrites(make_cache):
    lock = threading.Lock()
    evicted = set()

    def on_evict(item):
        with lock:
            evicted.add(item.key)

    cache = make_cache(ignore_internal_cost=True, metrics=True, on_evict=on_evict)
    retry_set(cache, 1, 1, 1, 1.0)
    time.sleep(1.2)
    assert cache.get(1) == (None, False)

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        with lock:
            if 1 in evicted:
                break
        time.sleep(0.05)
    with lock:
        assert evicted == {1}

    retry_set(cache, 2, 1, 1, 1.0)
    retry_set(cache, 2, 2, 1, 100.0)
    time.sleep(1.5)
    assert cache.get(2) == (2, True)

    retry_set(cache, 3, 1, 1, 0)
    retry_set(cache, 3, 2, 1, 1.0)
    time.sleep(1.5)
    assert cache.get(3) == (None, False)


def test_cache_delete(make_cache):
    cache = make_cache()
    cache.set(1, 1, 1)
    cache.delete(1)
    cache.wait()
    assert cache.get(1) == (None, False)


def test_cache_delete_with_ttl(make_cache):
    cache = make_cache(ignore_internal_cost=True)
    retry_set(cache, 3, 1, 1, 10.0)
    cache.delete(3)
    assert cache.get(3) == (None, False)


def test_get_ttl(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)

    retry_set(cache, 1, 1, 1, 5.0)
    assert cache.get(1) == (1, True)
    remaining, found = cache.get_ttl(1)
    assert found
    assert 4.0 < remaining <= 5.0
    cache.delete(1)
    assert cache.get_ttl(1) == (0.0, False)

    retry_set(cache, 2, 2, 1, 0)
    assert cache.get(2) == (2, True)
    assert cache.get_ttl(2) == (0.0, True)

    assert cache.get_ttl(3) == (0.0, False)

    retry_set(cache, 3, 3, 1, 1.0)
    assert cache.get(3) == (3, True)
    time.sleep(1.05)
    assert cache.get_ttl(3) == (0.0, False)


def test_cache_clear(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)
    for i in range(10):
        cache.set(i, i, 1)
    cache.wait()
    assert cache.metrics.keys_added() == 10

    cache.clear()
    assert cache.metrics.keys_added() == 0
    for i in range(10):
        assert cache.get(i) == (None, False)


def test_cache_metrics(make_cache):
    cache = make_cache(ignore_internal_cost=True, metrics=True)
    for i in range(10):
        cache.set(i, i, 1)
    cache.wait()
    assert cache.metrics.keys_added() == 10
    assert cache.metrics.cost_added() == 10


def test_cache_metrics_clear(make_cache):
    cache = make_cache(metrics=True)
    cache.set(1, 1, 1)
    for _ in range(5):
        cache.get(1)
    assert cache.metrics.hits() + cache.metrics.misses() == 5
    cache.clear()
    assert cache.metrics.hits() == 0
    assert cache.metrics.misses() == 0


def test_block_on_clear(make_cache):
    cache = make_cache(ignore_internal_cost=True)

    def waiter():
        for _ in range(10):
            cache.wait()

    thread = threading.Thread(target=waiter, daemon=True)
    thread.start()
    for _ in range(10):
        cache.clear()
    thread.join(timeout=1.0)
    assert not thread.is_alive()

    # The cache still works after the interleaved clears and waits.
    assert cache.set(1, 1, 1)
    cache.wait()
    assert cache.get(1) == (1, True)


def test_drop_updates_never_evicted(make_cache):
    for _ in range(5):
        dropped = set()
        evicted_values = []

        def on_evict(item):
            if isinstance(item.value, str):
                evicted_values.append(int(item.value))

        cache = make_cache(
            ignore_internal_cost=True,
            metrics=True,
            on_evict=on_evict,
            set_buffer_size=10,
        )
        for i in range(50):
            if not cache.set(0, f"{i:0100d}", 1):
                time.sleep(0.000001)
                dropped.add(i)
        cache.wait()
        assert cache.set(1, None, 10)
        cache.wait()
        cache.close()

        assert evicted_values
        assert not dropped.intersection(evicted_values)


def test_cache_with_ttl(make_cache):
    cache = make_cache(max_cost=1000, metrics=True)
    assert cache.set_with_ttl(1, 1, 1, 0.8)
    cache.wait()
    assert cache.get(1) == (1, True)
    time.sleep(1.2)
    assert cache.get(1) == (None, False)


def test_max_cost_respected_under_load(make_cache):
    charset = "abcdefghijklmnopqrstuvwxyz0123456789"
    max_cost = 100_000
    cache = make_cache(num_counters=12960, max_cost=max_cost, metrics=True)

    def worker(seed):
        rng = random.Random(seed)
        for _ in range(500):
            key = "".join(rng.choice(charset) for _ in range(2))
            _, found = cache.get(key)
            if not found:
                value = "test" if rng.randrange(100) < 10 else "a" * 1000
                new_key = "".join(rng.choice(charset) for _ in range(2))
                cache.set(new_key, value, 2 + len(value))

    threads = [threading.Thread(target=worker, args=(seed,)) for seed in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    cache.wait()

    used = (cache.metrics.cost_added() - cache.metrics.cost_evicted()) & ((1 << 64) - 1)
    assert used <= max_cost * 1.05
    assert cache.policy.capacity() >= 0


def test_stress_set_get(make_cache):
    cache = make_cache(
        num_counters=1000, max_cost=100, ignore_internal_cost=True, metrics=True
    )
    for i in range(100):
        cache.set(i, i, 1)
    cache.wait()

    errors = []

    def reader(seed):
        rng = random.Random(seed)
        for _ in range(1000):
            key = rng.randrange(10)
            value, found = cache.get(key)
            if not found or value != key:
                errors.append((key, value))
                return

    threads = [threading.Thread(target=reader, args=(seed,)) for seed in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert errors == []
    assert cache.metrics.ratio() == 1.0


def test_stress_hit_ratio(make_cache):
    keys = new_zipfian(1.0001, 1, 1000)
    cache = make_cache(num_counters=1000, max_cost=100, metrics=True)
    for _ in range(10000):
        key = keys()
        _, found = cache.get(key)
        if not found:
            cache.set(key, key, 1)
    assert cache.metrics.hits() + cache.metrics.misses() == 10000
    assert 0.0 <= cache.metrics.ratio() <= 1.0