"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceFamily(Enum):
    """Resource families with their own freshness and persistence rules."""
    VENUES = "venues"       # directory entries, 5 minutes, persisted
    RATINGS = "ratings"     # reviews by venue, 2 minutes, memory only
    PROFILE = "profile"     # actor profile, 5 minutes, persisted


@dataclass
class CacheEntry(Generic[T]):
    """
    A cached value with the moment it was fetched and its freshness window.
    """
    value: T
    cached_at: datetime
    ttl_seconds: float

    def age_seconds(self, now: datetime) -> float:
        """Seconds since the value was cached."""
        return (now - self.cached_at).total_seconds()

    def is_fresh(self, now: datetime) -> bool:
        """Fresh until the age strictly exceeds the window."""
        return self.age_seconds(now) <= self.ttl_seconds

    def to_payload(self, encode: Callable[[T], Any]) -> Dict[str, Any]:
        """Serializable form for durable storage."""
        return {
            "value": encode(self.value),
            "cachedAt": self.cached_at.isoformat(),
        }

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        decode: Callable[[Any], T],
        ttl_seconds: float,
    ) -> "CacheEntry[T]":
        """
        Rebuild an entry from durable storage.

        Raises:
            KeyError, TypeError, ValueError: on a corrupt payload
        """
        cached_at = datetime.fromisoformat(payload["cachedAt"])
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=timezone.utc)
        return cls(value=decode(payload["value"]), cached_at=cached_at, ttl_seconds=ttl_seconds)

