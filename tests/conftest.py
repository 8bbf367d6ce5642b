"""
Shared fakes for the sync layer tests: a controllable clock, a recording
sleep, and in-memory stand-ins for the backing store, auth and places.
"""
import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from reportcard.cache import SQLAlchemyDurableStore
from reportcard.clients.places import PhotoDownload
from reportcard.errors import StoreError, StoreErrorKind
from reportcard.models import Profile, RemoteCandidate, Review, Venue, VenueDraft, VenueWithStats


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class SleepRecorder:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeAuth:
    """
    Auth gateway driven by a script of sign-in outcomes.

    Each outcome is a user id (success) or an exception (failure).
    """

    def __init__(self, outcomes: Optional[List[Any]] = None, session_user: Optional[str] = None, delay: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.session_user = session_user
        self.delay = delay
        self.sign_in_calls = 0
        self.session_calls = 0

    async def get_session_user(self) -> Optional[str]:
        self.session_calls += 1
        await asyncio.sleep(0)
        return self.session_user

    async def sign_in_anonymously(self) -> str:
        self.sign_in_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else StoreError(StoreErrorKind.UPSTREAM, "no script left")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeBackingStore:
    """In-memory backing store with the uniqueness rule on reviews."""

    def __init__(self):
        self.venues: Dict[str, Venue] = {}
        self.reviews: List[Review] = []
        self.profiles: Dict[str, Profile] = {}
        self.uploads: Dict[str, bytes] = {}
        self.calls: Counter = Counter()
        self.fail: Dict[str, Exception] = {}
        self.delay: Dict[str, float] = {}

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.delay.get(name):
            await asyncio.sleep(self.delay[name])
        else:
            await asyncio.sleep(0)
        if name in self.fail:
            raise self.fail[name]

    def add_venue(self, venue_id: str, name: str, city: str, **kwargs) -> Venue:
        venue = Venue(id=venue_id, name=name, city=city, **kwargs)
        self.venues[venue_id] = venue
        return venue

    async def list_venues(self) -> List[VenueWithStats]:
        await self._enter("list_venues")
        result = []
        for venue in sorted(self.venues.values(), key=lambda v: v.name):
            scores = [r.score for r in self.reviews if r.venue_id == venue.id]
            result.append(
                VenueWithStats(
                    id=venue.id,
                    name=venue.name,
                    city=venue.city,
                    avg_score=(sum(scores) / len(scores)) if scores else None,
                    review_count=len(scores),
                    photo_url=venue.photo_url,
                    external_ref=venue.external_ref,
                )
            )
        return result

    async def create_venue(self, draft: VenueDraft) -> Venue:
        await self._enter("create_venue")
        venue_id = f"venue-{len(self.venues) + 1}"
        return self.add_venue(
            venue_id,
            draft.name,
            draft.city,
            country=draft.country,
            address=draft.address,
            photo_url=draft.photo_url,
            external_ref=draft.external_ref,
        )

    async def update_venue_photo(self, venue_id: str, photo_url: str) -> None:
        await self._enter("update_venue_photo")
        self.venues[venue_id].photo_url = photo_url

    async def list_reviews(self, venue_id: str) -> List[Review]:
        await self._enter("list_reviews")
        return [r for r in self.reviews if r.venue_id == venue_id]

    async def find_review(self, venue_id: str, user_id: str) -> Optional[Review]:
        await self._enter("find_review")
        return next((r for r in self.reviews if r.venue_id == venue_id and r.user_id == user_id), None)

    async def create_review(self, row: Dict[str, Any]) -> Review:
        await self._enter("create_review")
        if any(r.venue_id == row["venue_id"] and r.user_id == row["user_id"] for r in self.reviews):
            raise StoreError(StoreErrorKind.UNIQUE_VIOLATION, "duplicate key value", code="23505", status=409)
        review = Review(id=f"review-{len(self.reviews) + 1}", created_at="2026-01-01T12:00:00Z", **row)
        self.reviews.append(review)
        return review

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        await self._enter("get_profile")
        return self.profiles.get(user_id)

    async def create_profile(self, user_id: str, role: Optional[str] = None) -> Profile:
        await self._enter("create_profile")
        if user_id not in self.profiles:
            self.profiles[user_id] = Profile(id=user_id, role=role)
        return self.profiles[user_id]

    async def upload_photo(self, file_name: str, data: bytes, content_type: str) -> str:
        await self._enter("upload_photo")
        self.uploads[file_name] = data
        return f"https://store.test/storage/v1/object/public/venue-photos/{file_name}"


PROVIDER_PHOTO = "https://maps.googleapis.com/maps/api/place/photo?maxwidth=1200&photo_reference=abc&key=k"


class FakePlaces:
    def __init__(self, results: Optional[List[RemoteCandidate]] = None):
        self.results = results or []
        self.calls: Counter = Counter()
        self.fail: Dict[str, Exception] = {}
        self.photo_for_place: Optional[str] = PROVIDER_PHOTO
        self.queries: List[str] = []

    async def text_search(self, query: str) -> List[RemoteCandidate]:
        self.calls["text_search"] += 1
        self.queries.append(query)
        if "text_search" in self.fail:
            raise self.fail["text_search"]
        return list(self.results)

    def photo_url(self, photo_reference: str) -> str:
        self.calls["photo_url"] += 1
        return (
            "https://maps.googleapis.com/maps/api/place/photo?maxwidth=1200"
            f"&photo_reference={photo_reference}&key=k"
        )

    async def first_photo_url(self, place_id: str) -> Optional[str]:
        self.calls["first_photo_url"] += 1
        await asyncio.sleep(0)
        if "first_photo_url" in self.fail:
            raise self.fail["first_photo_url"]
        return self.photo_for_place

    async def download_photo(self, url: str) -> PhotoDownload:
        self.calls["download_photo"] += 1
        await asyncio.sleep(0)
        if "download_photo" in self.fail:
            raise self.fail["download_photo"]
        return PhotoDownload(data=b"\xff\xd8jpeg", content_type="image/jpeg")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def store():
    return FakeBackingStore()


@pytest.fixture
def places():
    return FakePlaces()


@pytest.fixture
def durable(tmp_path):
    """SQLite-backed durable store in a temp directory."""
    return SQLAlchemyDurableStore(path=tmp_path / "client_storage.db")
