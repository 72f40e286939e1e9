"""Key-access simulators for exercising caches with synthetic or traced workloads."""

from __future__ import annotations

import math
import random
from collections import deque
from typing import IO, AnyStr, Callable

Simulator = Callable[[], int]
Parser = Callable[[str], list[int]]

_MAX_UINT64 = (1 << 64) - 1


class SimulatorDone(Exception):
    """The underlying source has run out of values."""

    def __init__(self, message: str = "no more values in the simulator") -> None:
        super().__init__(message)


class BadLine(ValueError):
    """A trace line does not have the shape the parser expects."""

    def __init__(self, message: str = "bad line for trace format") -> None:
        super().__init__(message)


def _parse_uint(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"invalid unsigned integer: {text!r}")
    value = int(text)
    if value > _MAX_UINT64:
        raise ValueError(f"value out of range: {text!r}")
    return value


def new_zipfian(s: float, v: float, n: int) -> Simulator:
    """Return a simulator drawing values in ``[0, n]`` from a Zipf distribution.

    The probability of ``k`` is proportional to ``(v + k) ** -s``; ``s``
    must exceed 1 and ``v`` must be at least 1.
    """
    if s <= 1.0 or v < 1.0:
        raise ValueError("zipfian needs s > 1 and v >= 1")
    rng = random.Random()
    one_minus_q = 1.0 - s
    one_minus_q_inv = 1.0 / one_minus_q

    def h(x: float) -> float:
        return math.exp(one_minus_q * math.log(v + x)) * one_minus_q_inv

    def h_inv(x: float) -> float:
        return math.exp(one_minus_q_inv * math.log(one_minus_q * x)) - v

    hxm = h(float(n) + 0.5)
    hx0_minus_hxm = h(0.5) - math.exp(math.log(v) * -s) - hxm
    threshold = 1.0 - h_inv(h(1.5) - math.exp(-s * math.log(v + 1.0)))

    def draw() -> int:
        while True:
            ur = hxm + rng.random() * hx0_minus_hxm
            x = h_inv(ur)
            k = math.floor(x + 0.5)
            if k - x <= threshold:
                return int(k)
            if ur >= h(k + 0.5) - math.exp(-math.log(k + v) * s):
                return int(k)

    return draw


def new_uniform(maximum: int) -> Simulator:
    """Return a simulator drawing uniformly from ``[0, maximum)``."""
    if maximum <= 0:
        raise ValueError("maximum must be positive")
    rng = random.Random()
    return lambda: rng.randrange(maximum)


def new_reader(parser: Parser, file: IO[AnyStr]) -> Simulator:
    """Return a simulator yielding the keys ``parser`` extracts from each line.

    Raises :class:`SimulatorDone` once the file is exhausted, and whatever
    the parser raises for a line it cannot read.
    """
    pending: deque[int] = deque()

    def read() -> int:
        while not pending:
            line = file.readline()
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            pending.extend(parser(line))
        return pending.popleft()

    return read


def parse_lirs(line: str) -> list[int]:
    """Parse a LIRS trace line, which holds a single key."""
    line = line.strip()
    if not line:
        raise SimulatorDone()
    return [_parse_uint(line)]


def parse_arc(line: str) -> list[int]:
    """Parse an ARC trace line into the run of keys it describes.

    A line holds four columns: the first key, the number of keys, and two
    that are ignored.
    """
    if line == "":
        raise SimulatorDone()
    columns = line.split()
    if len(columns) != 4:
        raise BadLine()
    start = _parse_uint(columns[0])
    count = _parse_uint(columns[1])
    return list(range(start, start + count))


def collection(simulator: Simulator, size: int) -> list[int]:
    """Call the simulator ``size`` times; failed draws count as 0."""
    result = []
    for _ in range(size):
        try:
            result.append(simulator())
        except (SimulatorDone, ValueError):
            result.append(0)
    return result


def string_collection(simulator: Simulator, size: int) -> list[str]:
    """Like :func:`collection`, with every value rendered as a decimal string."""
    return [str(value) for value in collection(simulator, size)]