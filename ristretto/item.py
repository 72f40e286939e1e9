"""Items passed between the cache front end and its background processor."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ItemFlag(Enum):
    """What a buffered item asks the processor to do."""

    NEW = 0
    DELETE = 1
    UPDATE = 2


@dataclass
class Item:
    """A key-value entry on its way into (or out of) the cache.

    ``key`` and ``conflict`` are the two 64-bit hashes of the user key.
    ``expiration`` is a Unix timestamp in seconds, or ``None`` when the
    entry never expires. ``waiter`` is set only on marker items used to
    wait until every earlier buffered write has been applied.
    """

    key: int = 0
    conflict: int = 0
    value: Any = None
    cost: int = 0
    expiration: float | None = None
    flag: ItemFlag = ItemFlag.NEW
    waiter: threading.Event | None = None