"""
Venue creation, from a search candidate or by hand.

The venue row is created synchronously. Photo work (mirroring a provider
photo into our storage, or looking one up by the provider place id) runs as
fire-and-forget background jobs whose failure never touches the created row.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Iterable, Optional, Set

from reportcard.cache import ResourceCache
from reportcard.clients import BackingStore, PlacesClient, is_provider_photo
from reportcard.errors import StoreError, ValidationError, WorkflowError
from reportcard.matching import build_lookup, resolve
from reportcard.matching.matcher import LocalEntity
from reportcard.models import DEFAULT_COUNTRY, RemoteCandidate, Venue, VenueDraft
from reportcard.resources import DIRECTORY_KEY
from reportcard.utils.helpers import race_timeout, safe_strip

logger = logging.getLogger("workflows.venues")


@dataclass
class VenueResult:
    venue_id: str
    created: bool
    venue: Optional[Venue] = None


class BackgroundJobs:
    """
    Fire-and-forget jobs on the running loop.

    A failed job is logged and dropped: no retry, nothing reaches the caller.
    """

    def __init__(self):
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._stats = {"scheduled": 0, "succeeded": 0, "failed": 0}

    def schedule(self, name: str, job: Awaitable[Any]) -> "asyncio.Task[None]":
        task = asyncio.ensure_future(self._run(name, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._stats["scheduled"] += 1
        return task

    async def _run(self, name: str, job: Awaitable[Any]) -> None:
        try:
            await job
            self._stats["succeeded"] += 1
        except Exception as e:
            self._stats["failed"] += 1
            logger.warning(f"Background job {name} failed: {e}")

    async def drain(self) -> None:
        """Wait for every scheduled job, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def reset(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self._stats = {"scheduled": 0, "succeeded": 0, "failed": 0}

    def get_stats(self) -> Dict[str, int]:
        return {"pending": len(self._tasks), **self._stats}


def validate_draft(draft: VenueDraft) -> VenueDraft:
    """
    Trimmed copy of the draft; country defaults to USA.

    Raises:
        ValidationError: name or city missing
    """
    name = safe_strip(draft.name)
    city = safe_strip(draft.city)
    if not name:
        raise ValidationError("name", "Venue name is required")
    if not city:
        raise ValidationError("city", "City is required")
    return VenueDraft(
        name=name,
        city=city,
        country=safe_strip(draft.country) or DEFAULT_COUNTRY,
        address=safe_strip(draft.address) or None,
        photo_url=draft.photo_url or None,
        external_ref=draft.external_ref or None,
    )


class VenueWorkflow:
    def __init__(
        self,
        store: BackingStore,
        places: PlacesClient,
        directory_cache: ResourceCache,
        jobs: BackgroundJobs,
        timeout: float = 15.0,
    ):
        self._store = store
        self._places = places
        self._directory_cache = directory_cache
        self._jobs = jobs
        self._timeout = timeout

    async def create_venue_from_candidate(
        self,
        candidate: RemoteCandidate,
        local_entities: Iterable[LocalEntity],
    ) -> VenueResult:
        """
        Create a venue for a search candidate unless we already have it.

        Args:
            candidate: Result from the external search
            local_entities: Venues already known locally

        Returns:
            VenueResult; created=False with the existing id when the
            candidate resolves to a known venue
        """
        existing_id = resolve(candidate, build_lookup(local_entities))
        if existing_id:
            logger.info(f"Candidate '{candidate.name}' already exists as {existing_id}")
            return VenueResult(venue_id=existing_id, created=False)
        return await self.create_venue(VenueDraft.from_candidate(candidate))

    async def create_venue(self, draft: VenueDraft) -> VenueResult:
        """
        Create a venue row, then schedule photo jobs.

        Provider-hosted photo URLs are never stored on the row; they are
        mirrored in the background instead.

        Raises:
            ValidationError: name or city missing
            WorkflowError: the row could not be created
        """
        draft = validate_draft(draft)
        provider_photo = draft.photo_url if is_provider_photo(draft.photo_url) else None
        row_draft = VenueDraft(
            name=draft.name,
            city=draft.city,
            country=draft.country,
            address=draft.address,
            photo_url=None if provider_photo else draft.photo_url,
            external_ref=draft.external_ref,
        )

        try:
            venue = await race_timeout(self._store.create_venue(row_draft), self._timeout, "create_venue")
        except (StoreError, asyncio.TimeoutError) as e:
            logger.error(f"Venue create failed for '{draft.name}': {e}")
            raise WorkflowError() from e
        except Exception as e:
            logger.exception(f"Unexpected error creating venue '{draft.name}'")
            raise WorkflowError() from e

        self._directory_cache.invalidate(DIRECTORY_KEY)
        logger.info(f"Venue {venue.id} created: {venue.name}, {venue.city}")

        if provider_photo:
            self._jobs.schedule(f"mirror-photo:{venue.id}", self._mirror_photo(venue.id, provider_photo))
        elif draft.external_ref and not draft.photo_url:
            self._jobs.schedule(f"enrich-photo:{venue.id}", self._enrich_photo(venue.id, draft.external_ref))

        return VenueResult(venue_id=venue.id, created=True, venue=venue)

    async def _mirror_photo(self, venue_id: str, photo_url: str) -> None:
        photo = await self._places.download_photo(photo_url)
        file_name = f"{venue_id}-{int(time.time() * 1000)}.{photo.extension}"
        public_url = await self._store.upload_photo(file_name, photo.data, photo.content_type)
        await self._store.update_venue_photo(venue_id, public_url)
        self._directory_cache.invalidate(DIRECTORY_KEY)
        logger.info(f"Photo mirrored for venue {venue_id}")

    async def _enrich_photo(self, venue_id: str, external_ref: str) -> None:
        photo_url = await self._places.first_photo_url(external_ref)
        if not photo_url:
            logger.info(f"No provider photo for venue {venue_id}")
            return
        await self._mirror_photo(venue_id, photo_url)
