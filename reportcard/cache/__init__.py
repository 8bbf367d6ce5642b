"""
Keyed TTL caching with durable hydration and request coalescing.
"""
from .core import CacheEntry, Clock, ResourceFamily, utcnow
from .ttl_policies import (
    TTL_CONFIG,
    get_ttl_for_family,
    get_storage_prefix,
    should_persist,
)
from .durable import (
    DurableStore,
    SQLAlchemyDurableStore,
    StorageResult,
    StorageUnavailable,
    UnavailableDurableStore,
)
from .coalescer import RequestCoalescer
from .manager import ResourceCache

__all__ = [
    # Core types
    "CacheEntry",
    "Clock",
    "ResourceFamily",
    "utcnow",
    # TTL policies
    "TTL_CONFIG",
    "get_ttl_for_family",
    "get_storage_prefix",
    "should_persist",
    # Durable storage
    "DurableStore",
    "SQLAlchemyDurableStore",
    "StorageResult",
    "StorageUnavailable",
    "UnavailableDurableStore",
    # Coalescing
    "RequestCoalescer",
    # Manager
    "ResourceCache",
]
