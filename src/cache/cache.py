#!/usr/bin/env python3
"""
Slack Manager Cache Layer
In-memory, namespace-scoped TTL cache with get-or-fetch semantics

Implements:
- get_or_fetch(key, producer, ttl, bypass_cache) → cached value or fresh fetch
- get(key) / set(key, value, ttl)
- invalidate(key) → bool
- invalidate_pattern(matcher) → count
- clear() / clear_expired() → count
- enable() / disable()
- get_stats() → CacheStats{hits, misses, sets, invalidations, evictions, entries}
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .key_generator import CacheKey, KeyLike, KeyMatcher, coerce_key

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]


class TTL:
    """TTL tiers in seconds."""
    FIVE_MINUTES = 300
    FIFTEEN_MINUTES = 900
    HOUR = 3600


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time copy of cache counters."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    evictions: int = 0
    entries: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate_percent(self) -> float:
        if not self.total_requests:
            return 0.0
        return round(self.hits / self.total_requests * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "evictions": self.evictions,
            "entries": self.entries,
            "total_requests": self.total_requests,
            "hit_rate_percent": self.hit_rate_percent,
        }


@dataclass
class _CacheEntry:
    key: CacheKey
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class TTLCache:
    """
    Namespaced in-memory cache with per-entry TTL.

    Design principles:
    - One instance per client, passed explicitly (no module-level singleton)
    - Lazy expiry: an expired entry is evicted by the lookup that finds it
    - Producer failures propagate untouched and leave the store unchanged
    - Disabling skips reads without dropping stored entries
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: float = TTL.FIVE_MINUTES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not namespace:
            raise ValueError("cache namespace must be a non-empty string")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self._namespace = namespace
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._enabled = True
        self._reset_counters()

        logger.debug(f"TTLCache initialized (namespace={namespace}, default_ttl={default_ttl}s)")

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._invalidations = 0
        self._evictions = 0

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _slot(self, key: CacheKey) -> str:
        return f"{self._namespace}:{key}"

    def _lookup(self, key: CacheKey) -> Optional[_CacheEntry]:
        slot = self._slot(key)
        entry = self._entries.get(slot)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[slot]
            self._evictions += 1
            logger.debug(f"Evicted expired entry {key}")
            return None
        return entry

    def _store(self, key: CacheKey, value: Any, ttl: Optional[float]) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._entries[self._slot(key)] = _CacheEntry(
            key=key, value=value, stored_at=self._clock(), ttl=ttl,
        )
        self._sets += 1
        logger.debug(f"Cached {key} (ttl={ttl}s)")

    async def get_or_fetch(
        self,
        key: KeyLike,
        producer: Producer,
        ttl: Optional[float] = None,
        bypass_cache: bool = False,
    ) -> Any:
        """
        Return the cached value for key, or await producer() and cache it.

        Args:
            key: CacheKey or its canonical text
            producer: Zero-argument coroutine function called on a miss
            ttl: Entry lifetime in seconds (default_ttl when None)
            bypass_cache: Skip the read but still store the fresh result

        Returns:
            The cached or freshly produced value
        """
        cache_key = coerce_key(key)

        if self._enabled and not bypass_cache:
            entry = self._lookup(cache_key)
            if entry is not None:
                self._hits += 1
                logger.debug(f"Cache hit: {cache_key}")
                return entry.value

        value = await producer()

        self._misses += 1
        self._store(cache_key, value, ttl)
        logger.debug(
            f"Cache miss: {cache_key} "
            f"({'disabled' if not self._enabled else 'bypass' if bypass_cache else 'fetched'})"
        )
        return value

    def get(self, key: KeyLike) -> Optional[Any]:
        """Plain lookup. Returns None on miss, expiry, or while disabled."""
        cache_key = coerce_key(key)
        entry = self._lookup(cache_key) if self._enabled else None
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: KeyLike, value: Any, ttl: Optional[float] = None) -> CacheKey:
        cache_key = coerce_key(key)
        self._store(cache_key, value, ttl)
        return cache_key

    def invalidate(self, key: KeyLike) -> bool:
        """Remove one entry. Returns True if something was removed."""
        cache_key = coerce_key(key)
        removed = self._entries.pop(self._slot(cache_key), None) is not None
        if removed:
            self._invalidations += 1
            logger.info(f"Invalidated cache entry {cache_key}")
        return removed

    def invalidate_pattern(self, matcher: KeyMatcher) -> int:
        """Remove every entry whose key satisfies matcher. Returns count removed."""
        doomed = [slot for slot, entry in self._entries.items() if matcher(entry.key)]
        for slot in doomed:
            del self._entries[slot]

        if doomed:
            self._invalidations += len(doomed)
            logger.info(f"Invalidated {len(doomed)} cache entries by pattern")
        return len(doomed)

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        if cleared:
            self._invalidations += cleared
            logger.info(f"Cleared {cleared} cache entries (namespace={self._namespace})")
        return cleared

    def clear_expired(self) -> int:
        """Remove all expired entries eagerly."""
        now = self._clock()
        expired = [slot for slot, entry in self._entries.items() if entry.expired(now)]
        for slot in expired:
            del self._entries[slot]

        if expired:
            self._evictions += len(expired)
            logger.info(f"Cleared {len(expired)} expired cache entries")
        return len(expired)

    def enable(self) -> None:
        self._enabled = True
        logger.debug(f"Cache enabled (namespace={self._namespace})")

    def disable(self) -> None:
        self._enabled = False
        logger.debug(f"Cache disabled (namespace={self._namespace})")

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            invalidations=self._invalidations,
            evictions=self._evictions,
            entries=len(self._entries),
        )

    def reset_stats(self) -> None:
        self._reset_counters()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: KeyLike) -> bool:
        entry = self._entries.get(self._slot(coerce_key(key)))
        return entry is not None and not entry.expired(self._clock())
