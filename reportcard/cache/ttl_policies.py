"""
TTL configuration per resource family.
"""
from typing import Any, Dict

from .core import ResourceFamily


# TTL Configuration by family (in seconds)
TTL_CONFIG: Dict[ResourceFamily, Dict[str, Any]] = {
    ResourceFamily.VENUES: {
        "fresh_ttl": 300,           # 5 minutes
        "persist": True,            # survives restarts via durable store
        "storage_prefix": "venue_reviews_venues_cache",
    },
    ResourceFamily.RATINGS: {
        "fresh_ttl": 120,           # 2 minutes, ratings change more often
        "persist": False,           # memory only
        "storage_prefix": "venue_reviews_ratings_cache",
    },
    ResourceFamily.PROFILE: {
        "fresh_ttl": 300,           # 5 minutes
        "persist": True,
        "storage_prefix": "venue_reviews_profile_cache",
    },
}


def get_ttl_for_family(family: ResourceFamily) -> float:
    """Default freshness window for a family, in seconds."""
    return TTL_CONFIG[family]["fresh_ttl"]


def should_persist(family: ResourceFamily) -> bool:
    return TTL_CONFIG[family].get("persist", False)


def get_storage_prefix(family: ResourceFamily) -> str:
    return TTL_CONFIG[family]["storage_prefix"]
