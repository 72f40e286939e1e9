"""Count-min sketch with 4-bit counters, used for access frequency estimates."""

from __future__ import annotations

import random

DEPTH = 4
_HALVE = bytes(((b >> 1) & 0x77) for b in range(256))


def next_power_of_two(x: int) -> int:
    """Round ``x`` up to the next power of two; non-positive values give 0."""
    if x <= 0:
        return 0
    return 1 << (x - 1).bit_length()


class CountMinSketch:
    """Four rows of packed 4-bit counters, each row with its own seed."""

    def __init__(self, num_counters: int) -> None:
        if num_counters <= 0:
            raise ValueError("bad num_counters")
        num_counters = next_power_of_two(num_counters)
        self.mask = num_counters - 1
        self.seeds = [random.getrandbits(64) for _ in range(DEPTH)]
        self.rows = [bytearray(num_counters // 2) for _ in range(DEPTH)]

    def _positions(self, hashed: int):
        return (
            (row, (hashed ^ seed) & self.mask)
            for row, seed in zip(self.rows, self.seeds)
        )

    def increment(self, hashed: int) -> None:
        """Increment the counters for a key, saturating at 15."""
        for row, n in self._positions(hashed):
            index = n >> 1
            shift = (n & 1) * 4
            if (row[index] >> shift) & 0x0F < 15:
                row[index] += 1 << shift

    def estimate(self, hashed: int) -> int:
        """Return the smallest counter value for a key."""
        return min(
            (row[n >> 1] >> ((n & 1) * 4)) & 0x0F for row, n in self._positions(hashed)
        )

    def reset(self) -> None:
        """Halve every counter."""
        for row in self.rows:
            row[:] = row.translate(_HALVE)

    def clear(self) -> None:
        """Zero every counter."""
        for row in self.rows:
            row[:] = bytes(len(row))

    def row_string(self, index: int) -> str:
        """Render the counters of one row as space-separated two-digit values."""
        row = self.rows[index]
        return " ".join(
            f"{(byte >> shift) & 0x0F:02d}" for byte in row for shift in (0, 4)
        )