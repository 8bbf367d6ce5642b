"""
Process-wide instances, built once at startup.

Caches, the identity bootstrap and the background job set are owned by one
AppContext and passed to whoever needs them. Each has a reset() for tests.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from config.settings import Settings, settings
from reportcard.cache import (
    DurableStore,
    ResourceCache,
    ResourceFamily,
    SQLAlchemyDurableStore,
    UnavailableDurableStore,
    utcnow,
)
from reportcard.cache.core import Clock
from reportcard.clients import BackingStore, PlacesClient, RestBackingStore
from reportcard.identity import AnonymousIdentityBootstrap, AuthGateway, BackoffPolicy
from reportcard.models import Profile, Review, VenueWithStats
from reportcard.resources import (
    ResourceReader,
    decode_profile,
    decode_venues,
    directory_reader,
    encode_profile,
    encode_venues,
    profile_reader,
    ratings_reader,
)
from reportcard.workflows import (
    BackgroundJobs,
    LocalRoleStore,
    ProfileWorkflow,
    ReviewWorkflow,
    VenueWorkflow,
)

logger = logging.getLogger("context")


def build_durable_store(config: Settings = settings) -> DurableStore:
    if not config.durable_store_enabled:
        return UnavailableDurableStore()
    return SQLAlchemyDurableStore(
        path=config.durable_store_path,
        max_value_bytes=config.durable_store_max_value_bytes,
    )


class AppContext:
    """
    Wires the sync layer together.

    Usage:
        ctx = AppContext(store=RestBackingStore(), places=PlacesClient(),
                         durable=build_durable_store())
        identity = await ctx.identity.ensure()
        state = await ctx.directory().load()
    """

    def __init__(
        self,
        store: BackingStore,
        places: PlacesClient,
        durable: DurableStore,
        auth: Optional[AuthGateway] = None,
        config: Settings = settings,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.places = places
        self.durable = durable

        self.venues_cache: ResourceCache[List[VenueWithStats]] = ResourceCache(
            ResourceFamily.VENUES,
            ttl_seconds=config.venues_cache_ttl_seconds,
            durable=durable,
            encode=encode_venues,
            decode=decode_venues,
            clock=clock,
        )
        self.ratings_cache: ResourceCache[List[Review]] = ResourceCache(
            ResourceFamily.RATINGS,
            ttl_seconds=config.ratings_cache_ttl_seconds,
            durable=durable,
            clock=clock,
        )
        self.profile_cache: ResourceCache[Profile] = ResourceCache(
            ResourceFamily.PROFILE,
            ttl_seconds=config.profile_cache_ttl_seconds,
            durable=durable,
            encode=encode_profile,
            decode=decode_profile,
            clock=clock,
        )

        self.identity = AnonymousIdentityBootstrap(
            auth or store,
            backoff=BackoffPolicy(config.identity_backoff_delays),
            session_timeout=config.identity_session_timeout_seconds,
            create_timeout=config.identity_create_timeout_seconds,
            sleep=sleep,
        )

        self.jobs = BackgroundJobs()
        self.local_roles = LocalRoleStore(durable)

        self.reviews = ReviewWorkflow(
            store, self.ratings_cache, self.venues_cache, timeout=config.workflow_timeout_seconds
        )
        self.venues = VenueWorkflow(
            store, places, self.venues_cache, self.jobs, timeout=config.workflow_timeout_seconds
        )
        self.profiles = ProfileWorkflow(
            store, self.profile_cache, self.local_roles, timeout=config.workflow_timeout_seconds
        )

    def directory(self) -> ResourceReader[List[VenueWithStats]]:
        return directory_reader(self.store, self.venues_cache)

    def ratings(self, venue_id: str) -> ResourceReader[List[Review]]:
        return ratings_reader(self.store, self.ratings_cache, venue_id)

    def profile(self, user_id: str) -> ResourceReader[Profile]:
        return profile_reader(self.store, self.profile_cache, user_id)

    def reset(self) -> None:
        """Drop cached data, identity and pending jobs."""
        self.venues_cache.reset()
        self.ratings_cache.reset()
        self.profile_cache.reset()
        self.identity.reset()
        self.jobs.reset()

    def get_stats(self) -> dict:
        return {
            "venues": self.venues_cache.get_stats(),
            "ratings": self.ratings_cache.get_stats(),
            "profile": self.profile_cache.get_stats(),
            "identity": self.identity.state.value,
            "jobs": self.jobs.get_stats(),
        }

    async def close(self) -> None:
        await self.jobs.drain()
        for client in (self.store, self.places):
            close = getattr(client, "close", None)
            if close is not None:
                await close()


# Global context instance
_context: Optional[AppContext] = None


def get_context() -> AppContext:
    """Get or create the global context."""
    global _context
    if _context is None:
        _context = AppContext(
            store=RestBackingStore(),
            places=PlacesClient(),
            durable=build_durable_store(),
        )
        logger.info("Application context initialized")
    return _context


def set_context(context: Optional[AppContext]) -> None:
    """Install a context (tests) or clear it."""
    global _context
    _context = context


async def close_context() -> None:
    """Drain jobs, close HTTP clients and forget the global context."""
    global _context
    if _context is not None:
        await _context.close()
        _context = None
