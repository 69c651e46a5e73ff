"""
Small in-process cache with time-based expiry.

Instances are created and passed around explicitly (the API builds one at
startup); there is no shared module-level cache.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)

EVICTION_POLICIES = ("ttl", "lru")

_MISSING = object()


class TTLCache:
    """Key/value store whose entries expire *ttl_seconds* after they were set.

    With policy "lru" the cache also holds at most *max_entries* items and
    drops the least recently used one when full; "ttl" only expires by age.
    """

    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        policy: str = "ttl",
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if policy not in EVICTION_POLICIES:
            raise ValueError(f"Unknown eviction policy {policy!r}. Expected one of {', '.join(EVICTION_POLICIES)}.")
        if policy == "lru" and (max_entries is None or max_entries <= 0):
            raise ValueError("The lru policy needs a positive max_entries.")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.ttl_seconds = ttl_seconds
        self.policy = policy
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at > self.ttl_seconds

    def _lookup(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        stored_at, value = entry
        if self._expired(stored_at, self._clock()):
            del self._entries[key]
            return _MISSING
        if self.policy == "lru":
            self._entries.move_to_end(key)
        return value

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            self._misses += 1
            return default
        self._hits += 1
        return value

    def has(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        if self.policy == "lru" and self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %r from cache.", evicted)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            self._misses += 1
            value = factory()
            self.set(key, value)
        else:
            self._hits += 1
        return value

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        expired = sum(1 for stored_at, _ in self._entries.values() if self._expired(stored_at, now))
        lookups = self._hits + self._misses
        return {
            "total": len(self._entries),
            "expired": expired,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups * 100) if lookups else 0,
            "policy": self.policy,
        }
