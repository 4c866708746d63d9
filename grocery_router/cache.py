"""Short-lived result cache for oracle answers.

Entries expire after a fixed TTL and can be dropped by key prefix when
workflow state changes make earlier classifications stale. Each operation
touches only the key it names; expired entries are evicted on access and by
an occasional sweep on write.
"""

import copy
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from grocery_router import config

logger = logging.getLogger(__name__)


def digest(*parts: Any) -> str:
    """Stable SHA-256 fingerprint of *parts*."""
    raw = "||".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0


class ResultCache:
    """TTL key-value store with prefix invalidation.

    Values are deep-copied on the way in and out so callers can never mutate
    a cached fragment.
    """

    def __init__(
        self,
        ttl_seconds: float = config.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 100,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._sweep_every = sweep_every
        self._entries: dict[str, CacheEntry] = {}
        self.stats = CacheStats()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            self.stats.misses += 1
            return None
        self.stats.hits += 1
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(copy.deepcopy(value), self._clock() + self._ttl)
        self.stats.sets += 1
        if self.stats.sets % self._sweep_every == 0:
            self.evict_expired()

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with *prefix*."""
        stale = [key for key in list(self._entries) if key.startswith(prefix)]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            self.stats.invalidations += len(stale)
            logger.debug("Invalidated %d cache entries for prefix %r", len(stale), prefix)
        return len(stale)

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if e.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
