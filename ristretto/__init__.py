"""Fixed-size in-memory cache with TinyLFU admission and sampled LFU eviction."""

__version__ = "0.1.0"

__all__ = ["bloom", "cache", "item", "metrics", "policy", "ring", "sim", "sketch", "store", "ttl"]