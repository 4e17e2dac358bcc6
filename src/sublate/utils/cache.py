"""Time-bounded in-process cache.

Owned by the component that uses it (no module-level cache state). The
clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Maps keys to ``(value, inserted_at)`` and drops entries older than ``ttl`` seconds."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._items: dict[Hashable, tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> V | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, inserted_at = item
            if self._clock() - inserted_at >= self.ttl:
                del self._items[key]
                return None
            return value

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._items[key] = (value, self._clock())

    def evict_expired(self) -> int:
        """Drop all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, ts) in self._items.items() if now - ts >= self.ttl]
            for key in expired:
                del self._items[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
