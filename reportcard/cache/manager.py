"""
Keyed TTL cache with durable hydration and request coalescing.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .coalescer import RequestCoalescer
from .core import CacheEntry, Clock, ResourceFamily, utcnow
from .durable import DurableStore
from .ttl_policies import get_storage_prefix, get_ttl_for_family, should_persist

logger = logging.getLogger("cache.manager")

T = TypeVar("T")


def _identity(value: Any) -> Any:
    return value


class ResourceCache(Generic[T]):
    """
    Cache for one resource family, keyed by resource id.

    - Freshness window per family
    - Optional hydration from a durable store that may be unavailable
    - Request coalescing: at most one in-flight fetch per id
    - Stale values stay readable through peek() for stale-while-revalidate
    """

    def __init__(
        self,
        family: ResourceFamily,
        ttl_seconds: Optional[float] = None,
        durable: Optional[DurableStore] = None,
        encode: Callable[[T], Any] = _identity,
        decode: Callable[[Any], T] = _identity,
        clock: Clock = utcnow,
        persist: Optional[bool] = None,
    ):
        """
        Args:
            family: Resource family; selects default TTL and persistence
            ttl_seconds: Freshness window override
            durable: Durable store used when the family persists
            encode: Value -> JSON-compatible data for durable storage
            decode: JSON-compatible data -> value
            clock: Returns the current aware datetime
            persist: Override the family's persistence policy
        """
        self.family = family
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_ttl_for_family(family)
        persist = should_persist(family) if persist is None else persist
        self._durable = durable if persist else None
        self._prefix = get_storage_prefix(family)
        self._encode = encode
        self._decode = decode
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._coalescer = RequestCoalescer()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "hits_memory": 0,
            "hits_durable": 0,
            "misses": 0,
            "fetches": 0,
        }

    def _label(self, key: str) -> str:
        return f"{self.family.value}:{key}"

    def _storage_key(self, key: str) -> str:
        return f"{self._prefix}_{key}"

    # ------------------------------------------------------------------
    # Synchronous cache operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[T]:
        """
        Fresh value for key, or None.

        Falls back to the durable store when memory has nothing fresh; a
        fresh durable entry is promoted into memory. Never raises.
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(now):
            self._stats["hits_memory"] += 1
            logger.debug(f"CACHE HIT (memory): {self._label(key)} [age={entry.age_seconds(now):.1f}s]")
            return entry.value

        hydrated = self._hydrate(key, now)
        if hydrated is not None:
            self._entries[key] = hydrated
            self._stats["hits_durable"] += 1
            logger.debug(f"CACHE HIT (durable): {self._label(key)}")
            return hydrated.value

        self._stats["misses"] += 1
        return None

    def peek(self, key: str) -> Optional[T]:
        """In-memory value for key even if stale."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def _hydrate(self, key: str, now: datetime) -> Optional[CacheEntry[T]]:
        if self._durable is None:
            return None

        result = self._durable.get(self._storage_key(key))
        if not result.ok:
            logger.debug(f"Durable read skipped for {self._label(key)}: {result.error.reason}")
            return None
        if result.value is None:
            return None

        try:
            payload = json.loads(result.value)
            entry = CacheEntry.from_payload(payload, self._decode, self.ttl_seconds)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Corrupt durable entry for {self._label(key)}: {e}")
            self._durable.remove(self._storage_key(key))
            return None

        if not entry.is_fresh(now):
            return None
        return entry

    def set(self, key: str, value: Optional[T]) -> None:
        """
        Store value in memory and best-effort in durable storage.

        Setting None removes the entry.
        """
        if value is None:
            self.invalidate(key)
            return

        entry = CacheEntry(value=value, cached_at=self._clock(), ttl_seconds=self.ttl_seconds)
        self._entries[key] = entry
        self._persist(key, entry)

    def _persist(self, key: str, entry: CacheEntry[T]) -> None:
        if self._durable is None:
            return
        try:
            raw = json.dumps(entry.to_payload(self._encode))
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not serialize {self._label(key)} for durable storage: {e}")
            return
        result = self._durable.set(self._storage_key(key), raw)
        if not result.ok:
            logger.warning(f"Durable write skipped for {self._label(key)}: {result.error.reason}")

    def invalidate(self, key: str) -> bool:
        """
        Drop one entry from memory and durable storage.

        An in-flight fetch for the key is left running so callers keep
        sharing it.

        Returns:
            True if an in-memory entry was removed
        """
        removed = self._entries.pop(key, None) is not None
        if self._durable is not None:
            result = self._durable.remove(self._storage_key(key))
            if not result.ok:
                logger.warning(f"Durable remove skipped for {self._label(key)}: {result.error.reason}")
        if removed:
            logger.info(f"Invalidated cache: {self._label(key)}")
        return removed

    def clear(self) -> int:
        """
        Drop every entry of this family from memory and durable storage.

        Returns:
            Number of in-memory entries cleared
        """
        count = len(self._entries)
        self._entries.clear()
        if self._durable is not None:
            result = self._durable.remove_prefix(f"{self._prefix}_")
            if not result.ok:
                logger.warning(f"Durable clear skipped for {self.family.value}: {result.error.reason}")
        logger.info(f"Cleared {count} {self.family.value} cache entries")
        return count

    def reset(self) -> None:
        """Clear entries, forget in-flight fetches, zero the stats."""
        self.clear()
        self._coalescer = RequestCoalescer()
        self._stats = self._empty_stats()

    # ------------------------------------------------------------------
    # In-flight fetches
    # ------------------------------------------------------------------

    def get_pending_fetch(self, key: str) -> Optional["asyncio.Task[T]"]:
        return self._coalescer.get_pending(key)

    def set_pending_fetch(self, key: str, awaitable: Awaitable[T]) -> "asyncio.Task[T]":
        """Register an in-flight fetch; it removes itself when it settles."""
        return self._coalescer.register(key, awaitable)

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        force_refresh: bool = False,
    ) -> T:
        """
        Fresh cached value, else the shared in-flight fetch, else a new fetch.

        Args:
            key: Resource id
            fetch_fn: Coroutine factory performing the network call
            force_refresh: Skip the fresh-value check (still coalesces)

        Returns:
            The value

        Raises:
            Exception: the fetch error; the last good entry stays cached
        """
        if not force_refresh:
            cached = self.get(key)
            if cached is not None:
                return cached

        if self.get_pending_fetch(key) is None:
            logger.info(f"CACHE MISS: {self._label(key)}")
        return await self._coalescer.get_or_fetch(key, lambda: self._fetch_and_store(key, fetch_fn))

    async def _fetch_and_store(self, key: str, fetch_fn: Callable[[], Awaitable[T]]) -> T:
        self._stats["fetches"] += 1
        value = await fetch_fn()
        self.set(key, value)
        return value

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        coalescer = self._coalescer.get_stats()
        return {
            "family": self.family.value,
            "entries": len(self._entries),
            "ttl_seconds": self.ttl_seconds,
            **self._stats,
            "coalesced": coalescer["coalesced"],
            "coalescer": coalescer,
        }
