"""
Time-boxed key/value cache shared by every provider adapter.

Entries expire ``ttl_seconds`` after ``set``; expired entries are evicted
lazily on the next access (no background sweeper). An optional
``max_entries`` bound evicts least-recently-used entries for long-running
processes; ``None`` keeps the store unbounded.

Each operation is a plain dict mutation with no ``await`` in between, so
concurrent asyncio tasks may share one instance without locking.

Usage:
    cache = TTLCache(ttl_seconds=30)
    cache.set("tokens:market_data", tokens)
    tokens = cache.get("tokens:market_data")  # None once expired
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from shared.constants import DEFAULT_CACHE_TTL_SECONDS
from shared.types import CacheEntry


class TTLCache:
    """In-memory TTL cache with lazy eviction and an optional LRU bound."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._ttl = float(ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, tuple[CacheEntry, float]] = OrderedDict()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        item = self._store.get(key)
        if item is None:
            return None
        entry, ttl = item
        if not entry.is_fresh(self._clock(), ttl):
            self._store.pop(key, None)
            return None
        self._store.move_to_end(key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value; ``ttl`` overrides the default for this entry only."""
        entry = CacheEntry(key=key, value=value, stored_at=self._clock())
        self._store[key] = (entry, self._ttl if ttl is None else float(ttl))
        self._store.move_to_end(key)
        if self._max_entries is not None:
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        # Counts stored entries, expired ones included until touched
        return len(self._store)
