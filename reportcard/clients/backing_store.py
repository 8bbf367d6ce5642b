"""
Backing store client (PostgREST-style REST API, auth and object storage).

Every non-success response is decoded once here into a StoreError with a
StoreErrorKind; callers never inspect response text.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from dotenv import load_dotenv

from config.settings import settings
from reportcard.errors import StoreError, StoreErrorKind, decode_store_error
from reportcard.models import Profile, Review, Venue, VenueDraft, VenueWithStats

load_dotenv()

logger = logging.getLogger("clients.backing_store")

VENUE_DIRECTORY_SELECT = "id,name,city,photo_url,google_place_id,reviews(score,created_at,reviewer_role)"
REVIEW_SELECT = (
    "id,venue_id,user_id,reviewer_name,score,comment,created_at,"
    "sound_score,vibe_score,staff_score,layout_score,reviewer_role"
)
PROFILE_SELECT = "id,display_name,role"


class BackingStore(Protocol):
    """Remote collections used by the sync layer."""

    async def list_venues(self) -> List[VenueWithStats]: ...

    async def create_venue(self, draft: VenueDraft) -> Venue: ...

    async def update_venue_photo(self, venue_id: str, photo_url: str) -> None: ...

    async def list_reviews(self, venue_id: str) -> List[Review]: ...

    async def find_review(self, venue_id: str, user_id: str) -> Optional[Review]: ...

    async def create_review(self, row: Dict[str, Any]) -> Review: ...

    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def create_profile(self, user_id: str, role: Optional[str] = None) -> Profile: ...

    async def upload_photo(self, file_name: str, data: bytes, content_type: str) -> str: ...


class RestBackingStore:
    """
    httpx client for the backing store.

    Also implements AuthGateway: the anonymous session token it obtains is
    used for every later request.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        bucket: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Backing store URL. Defaults to settings.backing_store_url.
            anon_key: Public anon key. Defaults to settings.backing_store_anon_key.
            bucket: Photo bucket name. Defaults to settings.photo_bucket.
            timeout: Request timeout in seconds.
            transport: Optional transport (tests use httpx.MockTransport).
        """
        self._base_url = (base_url or settings.backing_store_url or "").rstrip("/")
        self._anon_key = anon_key or settings.backing_store_anon_key or ""
        self._bucket = bucket or settings.photo_bucket
        self._timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._access_token: Optional[str] = None
        self._client: Optional[httpx.AsyncClient] = None

        if not self._base_url or not self._anon_key:
            logger.warning("Backing store URL or anon key not configured")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if not self._base_url:
            raise StoreError(StoreErrorKind.NETWORK, "Backing store URL not configured")
        try:
            response = await self.client.request(
                method,
                path,
                params=params,
                json=json,
                content=content,
                headers=self._headers(headers),
            )
        except httpx.TimeoutException as e:
            raise StoreError(StoreErrorKind.TIMEOUT, f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise StoreError(StoreErrorKind.NETWORK, f"{method} {path} failed: {e}") from e

        if response.is_error:
            error = decode_store_error(response.status_code, response.text)
            logger.warning(f"{method} {path} -> {response.status_code} ({error.kind.value}): {error.message}")
            raise error
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Response was not JSON") from e

    def _rows(self, response: httpx.Response) -> List[Dict[str, Any]]:
        data = self._json(response)
        if not isinstance(data, list):
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Expected a list of rows")
        return data

    def _single(self, response: httpx.Response) -> Dict[str, Any]:
        rows = self._rows(response)
        if not rows:
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Expected one row, got none")
        return rows[0]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_session_user(self) -> Optional[str]:
        """Id of the current session user, None without a session."""
        if not self._access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except StoreError as e:
            if e.kind in (StoreErrorKind.POLICY_REJECTED, StoreErrorKind.NOT_FOUND):
                return None
            raise
        user = self._json(response)
        return user.get("id") if isinstance(user, dict) else None

    async def sign_in_anonymously(self) -> str:
        response = await self._request("POST", "/auth/v1/signup", json={"data": {}})
        body = self._json(response)
        user = body.get("user") if isinstance(body, dict) else None
        if not user or not user.get("id"):
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Sign-up returned no user")
        self._access_token = body.get("access_token") or self._access_token
        return user["id"]

    # ------------------------------------------------------------------
    # Venues
    # ------------------------------------------------------------------

    async def list_venues(self) -> List[VenueWithStats]:
        response = await self._request(
            "GET", "/rest/v1/venues", params={"select": VENUE_DIRECTORY_SELECT, "order": "name.asc"}
        )
        return [VenueWithStats.from_row(row) for row in self._rows(response)]

    async def create_venue(self, draft: VenueDraft) -> Venue:
        row = {
            "name": draft.name,
            "city": draft.city,
            "country": draft.country,
            "address": draft.address,
            "photo_url": draft.photo_url,
            "google_place_id": draft.external_ref,
        }
        response = await self._request(
            "POST", "/rest/v1/venues", json=row, headers={"Prefer": "return=representation"}
        )
        return Venue.from_row(self._single(response))

    async def update_venue_photo(self, venue_id: str, photo_url: str) -> None:
        await self._request(
            "PATCH", "/rest/v1/venues", params={"id": f"eq.{venue_id}"}, json={"photo_url": photo_url}
        )

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def list_reviews(self, venue_id: str) -> List[Review]:
        response = await self._request(
            "GET",
            "/rest/v1/reviews",
            params={"select": REVIEW_SELECT, "venue_id": f"eq.{venue_id}", "order": "created_at.desc"},
        )
        return [Review.from_row(row) for row in self._rows(response)]

    async def find_review(self, venue_id: str, user_id: str) -> Optional[Review]:
        response = await self._request(
            "GET",
            "/rest/v1/reviews",
            params={
                "select": REVIEW_SELECT,
                "venue_id": f"eq.{venue_id}",
                "user_id": f"eq.{user_id}",
                "limit": 1,
            },
        )
        rows = self._rows(response)
        return Review.from_row(rows[0]) if rows else None

    async def create_review(self, row: Dict[str, Any]) -> Review:
        response = await self._request(
            "POST", "/rest/v1/reviews", json=row, headers={"Prefer": "return=representation"}
        )
        return Review.from_row(self._single(response))

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        response = await self._request(
            "GET", "/rest/v1/profiles", params={"select": PROFILE_SELECT, "id": f"eq.{user_id}", "limit": 1}
        )
        rows = self._rows(response)
        return Profile.from_dict(rows[0]) if rows else None

    async def create_profile(self, user_id: str, role: Optional[str] = None) -> Profile:
        """
        Insert a profile, leaving an existing one untouched.

        Returns:
            The stored profile (the existing one if it was already there)
        """
        try:
            await self._request(
                "POST",
                "/rest/v1/profiles",
                json={"id": user_id, "role": role},
                headers={"Prefer": "resolution=ignore-duplicates,return=minimal"},
            )
        except StoreError as e:
            if e.kind != StoreErrorKind.UNIQUE_VIOLATION:
                raise
        profile = await self.get_profile(user_id)
        return profile or Profile(id=user_id, role=role)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def upload_photo(self, file_name: str, data: bytes, content_type: str) -> str:
        """Upload into the photo bucket; returns the public URL."""
        await self._request(
            "POST",
            f"/storage/v1/object/{self._bucket}/{file_name}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return f"{self._base_url}/storage/v1/object/public/{self._bucket}/{file_name}"
