"""A fixed-size Bloom filter over pre-hashed 64-bit keys."""

from __future__ import annotations

import base64
import json
import math

_LN2 = 0.69314718056
_MASK64 = (1 << 64) - 1
_MIN_BITS = 512


def _size_for(entries: int) -> tuple[int, int]:
    """Return the bit count (a power of two, at least 512) and its exponent."""
    target = max(entries, _MIN_BITS)
    exponent = (target - 1).bit_length()
    return 1 << exponent, exponent


def _size_by_false_positive_rate(entries: float, rate: float) -> tuple[int, int]:
    size = -1 * entries * math.log(rate) / (_LN2**2)
    locs = math.ceil(_LN2 * size / entries)
    return int(size), int(locs)


class BloomFilter:
    """Bloom filter storing hashes in a bitset whose size is a power of two.

    ``locs`` below 1 is read as the wanted false-positive rate, from which
    the bitset size and the number of hash locations are derived; otherwise
    ``entries`` is the number of bits and ``locs`` the number of locations.
    """

    def __init__(self, entries: float, locs: float) -> None:
        if entries <= 0:
            raise ValueError("entries must be positive")
        if locs <= 0:
            raise ValueError("locs must be a positive count or a rate in (0, 1)")
        if locs < 1:
            bits, set_locs = _size_by_false_positive_rate(float(entries), float(locs))
        else:
            bits, set_locs = int(entries), int(locs)
        size, exponent = _size_for(bits)
        self.size_exp = exponent
        self.set_locs = set_locs
        self.elem_num = 0
        self._mask = size - 1
        self._shift = 64 - exponent
        self._bits = bytearray(size >> 3)

    def _locations(self, hash_value: int):
        hash_value &= _MASK64
        high = hash_value >> self._shift
        low = ((hash_value << self._shift) & _MASK64) >> self._shift
        return ((high + i * low) & self._mask for i in range(self.set_locs))

    def add(self, hash_value: int) -> None:
        """Record a hash in the filter."""
        for idx in self._locations(hash_value):
            self.set_bit(idx)
            self.elem_num += 1

    def has(self, hash_value: int) -> bool:
        """Return True if every bit for the hash is set."""
        return all(self.is_set(idx) for idx in self._locations(hash_value))

    def add_if_not_has(self, hash_value: int) -> bool:
        """Add the hash unless present; return True if it was added."""
        if self.has(hash_value):
            return False
        self.add(hash_value)
        return True

    def total_size(self) -> int:
        """Approximate memory footprint in bytes."""
        return len(self._bits) + 5 * 8

    def clear(self) -> None:
        """Unset every bit."""
        self._bits[:] = bytes(len(self._bits))

    def set_bit(self, idx: int) -> None:
        self._bits[idx >> 3] |= 1 << (idx & 7)

    def is_set(self, idx: int) -> bool:
        return (self._bits[idx >> 3] >> (idx & 7)) & 1 == 1

    def to_json(self) -> bytes:
        """Serialise the bitset and location count as a JSON document."""
        document = {
            "FilterSet": base64.b64encode(bytes(self._bits)).decode("ascii"),
            "SetLocs": self.set_locs,
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> BloomFilter:
        """Rebuild a filter from the output of :meth:`to_json`."""
        document = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("bloom filter JSON must be an object")
        encoded = document.get("FilterSet") or ""
        if not isinstance(encoded, str):
            raise ValueError("FilterSet must be a base64 string")
        raw = base64.b64decode(encoded, validate=True)
        set_locs = document.get("SetLocs", 0)
        if not isinstance(set_locs, int) or isinstance(set_locs, bool):
            raise ValueError("SetLocs must be an integer")
        bloom = cls(max(len(raw) << 3, 1), set_locs)
        bloom._bits[: len(raw)] = raw
        return bloom