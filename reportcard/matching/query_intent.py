"""
Free-text query interpretation for the external venue search.

Decides whether the user typed a venue name or a place name, builds the
query forwarded to the places provider, and filters its results. The
provider's relevance ranking is too permissive on its own (a one-word query
matches unrelated venues in many cities), so filter_results() is required,
not an optimization.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List

from reportcard.models import RemoteCandidate
from .normalizer import normalize


# Words that mark a query as a venue name rather than a place name
VENUE_KEYWORDS = {
    "hall", "club", "theater", "theatre", "bar", "lounge", "ballroom",
    "arena", "stadium", "pub", "tavern", "cafe", "room", "venue",
    "amphitheater", "amphitheatre", "center", "centre", "auditorium",
    "saloon", "house", "garden", "stage",
}

PLACE_QUERY_PREFIX = "live music venues in"


class QueryKind(Enum):
    """How a search query is interpreted."""
    VENUE = "venue"     # looking for a venue by name
    PLACE = "place"     # looking for venues in a city/area
    EMPTY = "empty"     # nothing to search


@dataclass
class QueryIntent:
    """Interpretation of a search box + place selector pair."""
    kind: QueryKind
    words: List[str] = field(default_factory=list)
    provider_query: str = ""

    @property
    def phrase(self) -> str:
        return " ".join(self.words)


def _is_venue_word(word: str) -> bool:
    return word in VENUE_KEYWORDS or (word.endswith("s") and word[:-1] in VENUE_KEYWORDS)


def has_venue_keyword(words: Iterable[str]) -> bool:
    return any(_is_venue_word(w) for w in words)


def classify_query(text: str | None, place: str | None = None) -> QueryIntent:
    """
    Classify a query and build the provider query string.

    Args:
        text: What the user typed
        place: Selected place filter, if any

    Returns:
        QueryIntent

    Rules:
    - A multi-word query with no venue keyword is a place search
      ("new york city" → "live music venues in new york city")
    - Anything else typed is a venue search; with a selected place the
      provider query is "<query> in <place>", otherwise the raw text
    - Only a place selected → place search for that place
    """
    query = (text or "").strip()
    place = (place or "").strip()
    words = normalize(query).split()

    if not words:
        if not normalize(place):
            return QueryIntent(kind=QueryKind.EMPTY)
        return QueryIntent(
            kind=QueryKind.PLACE,
            words=normalize(place).split(),
            provider_query=f"{PLACE_QUERY_PREFIX} {place}",
        )

    if len(words) > 1 and not has_venue_keyword(words):
        return QueryIntent(
            kind=QueryKind.PLACE,
            words=words,
            provider_query=f"{PLACE_QUERY_PREFIX} {query}",
        )

    provider_query = f"{query} in {place}" if place else query
    return QueryIntent(kind=QueryKind.VENUE, words=words, provider_query=provider_query)


def _place_matches(intent: QueryIntent, candidate: RemoteCandidate) -> bool:
    candidate_place = normalize(candidate.city)
    if candidate_place:
        if all(w in candidate_place.split() for w in intent.words):
            return True
        if f" {candidate_place} " in f" {intent.phrase} ":
            return True
    # The place may sit in any part of the address ("..., Brooklyn, NY 11211, USA")
    for part in (candidate.address or "").split(",")[1:]:
        part_words = normalize(part).split()
        if part_words and all(w in part_words for w in intent.words):
            return True
    return False


def _venue_matches(intent: QueryIntent, candidate: RemoteCandidate) -> bool:
    haystack = normalize(" ".join([candidate.name or "", candidate.city or "", candidate.address or ""]))
    if f" {intent.phrase} " in f" {haystack} ":
        return True
    tokens = set(haystack.split())
    if all(w in tokens for w in intent.words):
        return True
    candidate_place = normalize(candidate.city)
    return bool(candidate_place) and f" {candidate_place} " in f" {intent.phrase} "


def filter_results(intent: QueryIntent, candidates: Iterable[RemoteCandidate]) -> List[RemoteCandidate]:
    """
    Keep only provider results consistent with the query intent.

    Place searches keep results whose place (or a non-street part of the
    address) contains every query word, or whose place appears in the query.
    Venue searches keep results whose name + place + address contains the
    phrase or every word, or whose place equals or appears in the query.
    """
    if intent.kind == QueryKind.EMPTY:
        return []
    if intent.kind == QueryKind.PLACE:
        return [c for c in candidates if _place_matches(intent, c)]
    return [c for c in candidates if _venue_matches(intent, c)]
