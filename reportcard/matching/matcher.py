"""Match externally discovered venues against venues we already have."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from reportcard.models import RemoteCandidate
from .normalizer import full_key, name_only_key, name_without_place_key

logger = logging.getLogger("matching.matcher")

# Produced when both name and place normalize to nothing; never a match.
EMPTY_KEY = full_key("", "")


class LocalEntity(Protocol):
    """Anything with an id, a name and a place (Venue, VenueWithStats)."""
    id: str
    name: str
    city: str


class MatchLevel(Enum):
    """Which key produced a match, most specific first."""
    FULL = "full"
    NAME_ONLY = "name_only"
    NAME_WITHOUT_PLACE = "name_without_place"


class CandidateAction(Enum):
    """What the user is offered for a candidate."""
    LINK = "link"       # go to the existing report card
    CREATE = "create"   # add the venue


@dataclass
class CandidateMatch:
    """A candidate with its resolution against local venues."""
    candidate: RemoteCandidate
    local_id: Optional[str] = None
    level: Optional[MatchLevel] = None

    @property
    def action(self) -> CandidateAction:
        return CandidateAction.LINK if self.local_id else CandidateAction.CREATE


def build_lookup(local_entities: Iterable[LocalEntity]) -> Dict[str, str]:
    """
    Map every derivable key to a local venue id.

    Full keys always win. Fallback keys (name-only, name-without-place) are
    only set when nothing occupies the slot yet, so a fallback never shadows
    another venue's more specific mapping. Entities without a name or a place
    are skipped.
    """
    entities = [e for e in local_entities if e.name and e.city]
    lookup: Dict[str, str] = {}

    for entity in entities:
        lookup[full_key(entity.name, entity.city)] = entity.id

    for entity in entities:
        for key in (name_only_key(entity.name), name_without_place_key(entity.name, entity.city)):
            if key == EMPTY_KEY:
                continue
            if key not in lookup:
                lookup[key] = entity.id

    logger.debug(f"Built venue lookup: {len(entities)} venues, {len(lookup)} keys")
    return lookup


def resolve_with_level(
    candidate: RemoteCandidate,
    lookup: Dict[str, str],
) -> Tuple[Optional[str], Optional[MatchLevel]]:
    """
    Resolve a candidate, trying keys from most to least specific.

    Returns:
        Tuple of (local id or None, level that matched or None)
    """
    attempts = (
        (MatchLevel.FULL, full_key(candidate.name, candidate.city)),
        (MatchLevel.NAME_ONLY, name_only_key(candidate.name)),
        (MatchLevel.NAME_WITHOUT_PLACE, name_without_place_key(candidate.name, candidate.city)),
    )
    for level, key in attempts:
        if key == EMPTY_KEY:
            continue
        local_id = lookup.get(key)
        if local_id:
            return local_id, level
    return None, None


def resolve(candidate: RemoteCandidate, lookup: Dict[str, str]) -> Optional[str]:
    """Local venue id the candidate refers to, or None."""
    local_id, _ = resolve_with_level(candidate, lookup)
    return local_id


def classify(candidates: Iterable[RemoteCandidate], lookup: Dict[str, str]) -> List[CandidateMatch]:
    """Pair each candidate with its resolution and offered action."""
    matches = []
    for candidate in candidates:
        local_id, level = resolve_with_level(candidate, lookup)
        matches.append(CandidateMatch(candidate=candidate, local_id=local_id, level=level))
    return matches
