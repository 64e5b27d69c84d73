"""
In-process read-through cache used in front of hot document lookups.

The volume cache keeps recently fetched keyword volumes here so repeated
lookups inside one pipeline run do not hit the document store again.

Architecture:
    ::

        CacheBackend (Protocol)
        └── InMemoryCache  (single-process, bounded LRU, TTL)

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)
             exists(key) → bool
             clear()

Examples:
    >>> cache = InMemoryCache(max_size=2, default_ttl_seconds=60)
    >>> cache.set("IN__en__2356__shampoo", {"volume": 500})
    >>> cache.get("IN__en__2356__shampoo")
    {'volume': 500}

Guardrails:
    ❌ DON'T: Treat a cache hit as authoritative across processes
    ✅ DO: Fall back to the store on a miss; the store is the source of truth

Tags:
    cache, ttl, lru, read-through, snapshot-spine
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Protocol


class CacheBackend(Protocol):
    """Protocol for cache backends. Keys are strings."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def clear(self) -> None: ...


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached. Guarded by a lock because
    the volume cache reads from worker threads during fan-out.

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=1800)
        cache.set("pointer:shampoo_2025-12", "deepDiveV2_shampoo_2025-12_r1")
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: int | None = 3600,
        time_fn: Callable[[], float] = time.time,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._time = time_fn
        self._lock = threading.Lock()

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._time() > expires_at

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key; expired entries are dropped lazily."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (self._time() + ttl) if ttl else None
        with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys (expired ones included)."""
        return len(self._store)


__all__ = ["CacheBackend", "InMemoryCache"]
