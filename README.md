# ristretto

A thread-safe, fixed-size, in-memory cache for Python. A TinyLFU policy
decides which new items are let in. It is built from a count-min sketch and a
Bloom-filter doorkeeper. A sampled LFU policy decides which items to evict, so
the cache keeps the entries that are used most.

The package has no dependencies beyond the standard library.

## Installing

```
pip install .
```

## Using the cache

```python
from ristretto.cache import Cache, Config

with Cache(Config(num_counters=10_000, max_cost=1_000, buffer_items=64, metrics=True)) as cache:
    cache.set("answer", 42, 1)
    cache.wait()                    # apply buffered writes
    value, found = cache.get("answer")

    cache.set_with_ttl("session", "abc", 1, 5.0)   # expires after five seconds
    remaining, found = cache.get_ttl("session")

    cache.delete("answer")
    print(cache.metrics)            # hits, misses, keys added, hit ratio, ...
```

Leaving the `with` block calls `close()`. `close()` empties the cache and
stops its background threads. After that, `set` returns `False`, `get`
returns `(None, False)`, and `closed` is `True`.

### Writes are buffered

`set` and `set_with_ttl` first put the write in a buffer. A background thread
applies it a little later, so call `wait()` when a following `get` must see
the write. `set` returns `False` in these cases:

- the key is `None`;
- the cache is closed;
- the TTL is negative;
- the buffer is full and the key was not already in the cache.

The admission policy can still reject a write after `set` has returned `True`.
A write to a key that is already cached updates the stored value at once.

`set_with_ttl` takes the time to live in seconds, as a number or a
`datetime.timedelta`. A TTL of `0` means the entry never expires. `get_ttl`
returns the number of seconds the entry has left, together with a flag that
says whether it was found. An entry without expiration gives `(0.0, True)`.
Expired entries are no longer returned by `get`. A periodic sweep removes
them from the cache and reports them to `on_evict`.

### Costs

Each entry has a cost. When the total cost would go over `max_cost`, entries
that are used less often are evicted to make room. A new entry that is used
less often than the eviction candidates is rejected instead. By default every
entry also counts the memory needed to store it. Set
`ignore_internal_cost=True` when costs are not measured in bytes. If `cost`
is set to a function and `set` is given a cost of `0`, the function works
out the cost of the value. `max_cost()` and `update_max_cost()` read and
resize the limit of a cache that is already running.

### Configuration

`Config` fields:

| field | meaning |
| --- | --- |
| `num_counters` | number of access-frequency counters (rounded up to a power of two); must be non-zero |
| `max_cost` | capacity of the cache, in the units used for costs; must be non-zero |
| `buffer_items` | size of the batches in which key accesses are recorded; must be non-zero |
| `metrics` | keep a `Metrics` object in `cache.metrics` |
| `on_evict` | called with the `Item` of every evicted entry |
| `on_reject` | called with the `Item` of every write the policy rejects |
| `on_exit` | called with every non-`None` value that leaves the cache |
| `key_to_hash` | replaces the default key hashing; returns `(key_hash, conflict_hash)` |
| `cost` | works out the cost of a value written with cost `0` |
| `ignore_internal_cost` | do not add the storage overhead to each cost |
| `ttl_ticker_duration_in_sec` | width of the expiration buckets in seconds (default 5); expired entries are swept every half of it |
| `set_buffer_size` | capacity of the write buffer (default 32768) |

A zero `num_counters`, `max_cost` or `buffer_items` raises `ValueError`.

The default `key_to_hash` accepts integers, which are used as their own
hash, and strings and bytes, which are hashed. Any other key type raises
`TypeError`; pass your own `key_to_hash` to support other keys.

### Metrics

With `metrics=True`, `cache.metrics` counts the following:

- hits and misses, and `ratio()`;
- keys added, updated and evicted;
- cost added and evicted;
- sets dropped and rejected;
- key-access records dropped and kept.

`life_expectancy_seconds()` gives how long evicted keys stayed in the cache.
`clear()` on the cache also resets the metrics.

## Building blocks

These parts can also be used on their own:

- `ristretto.bloom.BloomFilter`: a Bloom filter over 64-bit hashes.
  `to_json()` saves it and `BloomFilter.from_json()` loads it again.
- `ristretto.sketch.CountMinSketch`: a count-min sketch with 4-bit counters.
  Also `next_power_of_two`.
- `ristretto.ring.RingBuffer`: lossy striped buffers that pass batches of
  keys to a consumer.
- `ristretto.policy.Policy`, `TinyLFU` and `SampledLFU`: the admission and
  eviction logic.
- `ristretto.store.ShardedMap` and `ristretto.ttl.ExpirationMap`: the sharded
  key/value store and its expiration buckets.
- `ristretto.metrics.Metrics`: the event counters.
- `ristretto.sim`: key generators for trying out hit ratios.
  - `new_zipfian` and `new_uniform` draw keys at random.
  - `new_reader` reads keys from trace files, with `parse_lirs` and
    `parse_arc` as the line parsers.
  - A reader raises `SimulatorDone` at the end of the file. `parse_arc`
    raises `BadLine` for a malformed line.
  - `collection` and `string_collection` gather a number of keys.

## What it does not do

The cache lives only in the memory of one process. It does not save entries
to disk, and it cannot be shared between processes or machines. The package
is a library only and installs no command-line program.

## Tests

```
pip install .[test]
pytest
```