"""
Read hooks over the cached resource families.

Each reader exposes {data, loading, error, refetch()}: fresh data returns
at once, stale data is visible through snapshot() while the shared fetch
runs, and a failed fetch keeps the last good value.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from reportcard.cache import ResourceCache
from reportcard.errors import StoreError
from reportcard.models import Profile, Review, VenueWithStats

logger = logging.getLogger("resources")

T = TypeVar("T")

# The venue directory is cached as a single entry
DIRECTORY_KEY = "all"


@dataclass
class ResourceState(Generic[T]):
    data: Optional[T] = None
    loading: bool = False
    error: Optional[str] = None
    stale: bool = False


class ResourceReader(Generic[T]):
    """Cache-backed reader for one resource id."""

    def __init__(
        self,
        cache: ResourceCache[T],
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        label: str = "resource",
    ):
        self._cache = cache
        self._key = key
        self._fetch_fn = fetch_fn
        self._label = label

    def snapshot(self) -> ResourceState[T]:
        """What can be shown right now, without awaiting anything."""
        fresh = self._cache.get(self._key)
        if fresh is not None:
            return ResourceState(data=fresh)
        return ResourceState(
            data=self._cache.peek(self._key),
            loading=True,
            stale=self._cache.peek(self._key) is not None,
        )

    async def load(self, force_refresh: bool = False) -> ResourceState[T]:
        """
        Fresh cached value, or the result of the shared fetch.

        Returns:
            ResourceState; on failure data is the last good value (if any)
            and error is set
        """
        if not force_refresh:
            fresh = self._cache.get(self._key)
            if fresh is not None:
                return ResourceState(data=fresh)

        previous = self._cache.peek(self._key)
        try:
            # Freshness was checked above; still joins an in-flight fetch.
            data = await self._cache.get_or_fetch(self._key, self._fetch_fn, force_refresh=True)
        except (StoreError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to load {self._label} {self._key}: {e}")
            return ResourceState(
                data=previous,
                error=f"Failed to load {self._label}",
                stale=previous is not None,
            )
        return ResourceState(data=data)

    async def refetch(self) -> ResourceState[T]:
        return await self.load(force_refresh=True)


# ----------------------------------------------------------------------
# Durable encoding
# ----------------------------------------------------------------------

def encode_venues(venues: List[VenueWithStats]) -> List[Dict[str, Any]]:
    return [v.to_dict() for v in venues]


def decode_venues(data: List[Dict[str, Any]]) -> List[VenueWithStats]:
    return [VenueWithStats.from_dict(item) for item in data]


def encode_profile(profile: Profile) -> Dict[str, Any]:
    return profile.to_dict()


def decode_profile(data: Dict[str, Any]) -> Profile:
    return Profile.from_dict(data)


# ----------------------------------------------------------------------
# Readers
# ----------------------------------------------------------------------

def directory_reader(store, cache: ResourceCache[List[VenueWithStats]]) -> ResourceReader[List[VenueWithStats]]:
    return ResourceReader(cache, DIRECTORY_KEY, store.list_venues, label="venues")


def ratings_reader(store, cache: ResourceCache[List[Review]], venue_id: str) -> ResourceReader[List[Review]]:
    return ResourceReader(cache, venue_id, lambda: store.list_reviews(venue_id), label="reviews")


def profile_reader(store, cache: ResourceCache[Profile], user_id: str) -> ResourceReader[Profile]:
    """Profile of an actor, created on first read when missing."""

    async def fetch() -> Profile:
        profile = await store.get_profile(user_id)
        if profile is None:
            logger.info(f"Creating profile for {user_id}")
            profile = await store.create_profile(user_id)
        return profile

    return ResourceReader(cache, user_id, fetch, label="profile")


def split_my_review(reviews: List[Review], user_id: Optional[str]) -> Tuple[Optional[Review], List[Review]]:
    """
    The viewer's own review and everyone else's.

    Returns:
        Tuple of (my review or None, other reviews in original order)
    """
    if not user_id:
        return None, list(reviews)
    mine = next((r for r in reviews if r.user_id == user_id), None)
    others = [r for r in reviews if r is not mine]
    return mine, others
