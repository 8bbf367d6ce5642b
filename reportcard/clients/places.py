"""
External directory search client (Google Places web service).
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx
from dotenv import load_dotenv

from config.settings import settings
from reportcard.errors import StoreError, StoreErrorKind
from reportcard.models import RemoteCandidate

load_dotenv()

logger = logging.getLogger("clients.places")

# Result types that describe an area, not a venue
UNWANTED_TYPES = {
    "locality",
    "administrative_area_level_1",
    "administrative_area_level_2",
    "country",
    "political",
}

# "NY 10012", "IL", "CA 94103-1234": region code with an optional postcode
REGION_POSTCODE = re.compile(r"^[A-Z]{2,3}(\s+[0-9][0-9-]*)?$")
PHOTO_MAX_WIDTH = 1200


@dataclass
class PhotoDownload:
    data: bytes
    content_type: str

    @property
    def extension(self) -> str:
        return "png" if "png" in self.content_type else "jpg"


def parse_city_country(address: str) -> Tuple[str, str]:
    """
    City and country from a formatted address.

    Example: "131 W 3rd St, New York, NY 10012, USA" → ("New York", "USA")

    A region/postcode part ("NY 10012") before the country is skipped when
    there is a part before it to use instead.
    """
    parts = [p.strip() for p in (address or "").split(",")]
    if len(parts) < 2:
        return "", ""
    country = parts[-1]
    if len(parts) >= 3 and REGION_POSTCODE.match(parts[-2]):
        return parts[-3], country
    return parts[-2], country


def is_provider_photo(url: Optional[str], base_url: Optional[str] = None) -> bool:
    """
    True only for the provider's own photo endpoint.

    Scheme, host and path must equal `{base_url}/photo`.
    """
    if not url:
        return False
    expected = urlsplit(f"{(base_url or settings.places_base_url).rstrip('/')}/photo")
    actual = urlsplit(url)
    return (
        actual.scheme == expected.scheme
        and actual.netloc == expected.netloc
        and actual.path == expected.path
    )


class PlacesClient:
    """
    Text search, place details and photo download.

    Provider failures surface as StoreError (UPSTREAM, TIMEOUT, NETWORK).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key or settings.places_api_key or ""
        self._base_url = (base_url or settings.places_base_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        follow_redirects: bool = False,
    ) -> httpx.Response:
        if not self._api_key:
            raise StoreError(StoreErrorKind.UPSTREAM, "Places API key not configured")
        try:
            response = await self.client.get(url, params=params, follow_redirects=follow_redirects)
        except httpx.TimeoutException as e:
            raise StoreError(StoreErrorKind.TIMEOUT, "Places request timed out") from e
        except httpx.HTTPError as e:
            raise StoreError(StoreErrorKind.NETWORK, f"Places request failed: {e}") from e
        if response.is_error:
            logger.error(f"Places HTTP error: {response.status_code}")
            raise StoreError(StoreErrorKind.UPSTREAM, "Upstream error", status=response.status_code)
        return response

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._get(f"{self._base_url}/{path}", {**params, "key": self._api_key})
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Places response was not JSON") from e

    def photo_url(self, photo_reference: str) -> str:
        return (
            f"{self._base_url}/photo?maxwidth={PHOTO_MAX_WIDTH}"
            f"&photo_reference={photo_reference}&key={self._api_key}"
        )

    def _to_candidate(self, place: Dict[str, Any]) -> RemoteCandidate:
        address = place.get("formatted_address") or ""
        city, country = parse_city_country(address)
        photos = place.get("photos") or []
        photo_ref = photos[0].get("photo_reference") if photos else None
        return RemoteCandidate(
            name=place.get("name") or "",
            city=city,
            country=country,
            address=address,
            external_ref=place.get("place_id"),
            photo_url=self.photo_url(photo_ref) if photo_ref else None,
            photo_ref=photo_ref,
        )

    async def text_search(self, query: str) -> List[RemoteCandidate]:
        """
        Run a text search; area results (cities, regions) are dropped.

        Returns:
            Candidates in provider order
        """
        if not query:
            return []
        data = await self._get_json("textsearch/json", {"query": query})
        status = data.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            logger.error(f"Places API status: {status} {data.get('error_message', '')}")
            raise StoreError(StoreErrorKind.UPSTREAM, "Places API error")

        results = []
        for place in data.get("results") or []:
            types = set(place.get("types") or [])
            if types & UNWANTED_TYPES:
                continue
            results.append(self._to_candidate(place))
        logger.info(f"Places search '{query}': {len(results)} results")
        return results

    async def first_photo_url(self, place_id: str) -> Optional[str]:
        """Provider photo URL for a place, or None when it has no photos."""
        data = await self._get_json("details/json", {"place_id": place_id, "fields": "photos"})
        photos = (data.get("result") or {}).get("photos") or []
        if data.get("status") != "OK" or not photos:
            return None
        return self.photo_url(photos[0]["photo_reference"])

    async def download_photo(self, url: str) -> PhotoDownload:
        if not is_provider_photo(url, self._base_url):
            raise StoreError(StoreErrorKind.INVALID_RESPONSE, "Not a provider photo URL")
        # The photo endpoint answers with a redirect to the image host
        response = await self._get(url, follow_redirects=True)
        return PhotoDownload(
            data=response.content,
            content_type=response.headers.get("content-type") or "image/jpeg",
        )
