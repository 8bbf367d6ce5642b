"""
Domain records shared by the cache, matcher, and workflows.

These dataclasses are the canonical shape of venue, review, and profile data,
independent of whether they came from the backing store, the places provider,
or durable client storage.
"""
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from reportcard.utils.helpers import safe_int, safe_str, safe_strip


SCORE_MIN = 1
SCORE_MAX = 10
DEFAULT_COUNTRY = "USA"

ASPECT_FIELDS = ("sound_score", "vibe_score", "staff_score", "layout_score")


class ReviewerRole(Enum):
    """Self-declared role of a reviewer."""
    ARTIST = "artist"
    FAN = "fan"

    @classmethod
    def parse(cls, value: Any) -> Optional["ReviewerRole"]:
        """Return the role for 'artist'/'fan', None for empty, raise otherwise."""
        if value is None or value == "":
            return None
        if isinstance(value, ReviewerRole):
            return value
        return cls(str(value))


@dataclass
class Venue:
    """A venue already known to the backing store (a local entity)."""
    id: str
    name: str
    city: str
    country: str = DEFAULT_COUNTRY
    address: Optional[str] = None
    photo_url: Optional[str] = None
    external_ref: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Venue":
        return cls(
            id=safe_str(row.get("id")),
            name=safe_str(row.get("name")),
            city=safe_str(row.get("city")),
            country=safe_str(row.get("country"), DEFAULT_COUNTRY) or DEFAULT_COUNTRY,
            address=row.get("address"),
            photo_url=row.get("photo_url"),
            external_ref=row.get("google_place_id"),
        )


@dataclass
class VenueWithStats:
    """Directory entry: a venue plus aggregate rating stats."""
    id: str
    name: str
    city: str
    avg_score: Optional[float] = None
    review_count: int = 0
    latest_review_at: Optional[str] = None
    photo_url: Optional[str] = None
    external_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VenueWithStats":
        return cls(
            id=data["id"],
            name=data["name"],
            city=data["city"],
            avg_score=data.get("avg_score"),
            review_count=data.get("review_count", 0),
            latest_review_at=data.get("latest_review_at"),
            photo_url=data.get("photo_url"),
            external_ref=data.get("external_ref"),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "VenueWithStats":
        """Build from a venue row with embedded `reviews(score, created_at)`."""
        reviews = row.get("reviews") or []
        scores = [r["score"] for r in reviews if isinstance(r.get("score"), (int, float))]
        dates = [r["created_at"] for r in reviews if isinstance(r.get("created_at"), str) and r["created_at"]]
        return cls(
            id=safe_str(row.get("id")),
            name=safe_str(row.get("name")),
            city=safe_str(row.get("city")),
            avg_score=(sum(scores) / len(scores)) if scores else None,
            review_count=len(reviews),
            latest_review_at=max(dates) if dates else None,
            photo_url=row.get("photo_url"),
            external_ref=row.get("google_place_id"),
        )


@dataclass
class RemoteCandidate:
    """A venue discovered through the external directory search."""
    name: str
    city: str = ""
    country: str = ""
    address: str = ""
    external_ref: Optional[str] = None
    photo_url: Optional[str] = None
    photo_ref: Optional[str] = None


@dataclass
class Review:
    """One rating of a venue by one actor."""
    id: str
    venue_id: str
    user_id: str
    score: int
    reviewer_name: Optional[str] = None
    comment: Optional[str] = None
    created_at: Optional[str] = None
    sound_score: Optional[int] = None
    vibe_score: Optional[int] = None
    staff_score: Optional[int] = None
    layout_score: Optional[int] = None
    reviewer_role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Review":
        return cls(
            id=safe_str(row.get("id")),
            venue_id=safe_str(row.get("venue_id")),
            user_id=safe_str(row.get("user_id")),
            score=safe_int(row.get("score")),
            reviewer_name=row.get("reviewer_name"),
            comment=row.get("comment"),
            created_at=row.get("created_at"),
            sound_score=row.get("sound_score"),
            vibe_score=row.get("vibe_score"),
            staff_score=row.get("staff_score"),
            layout_score=row.get("layout_score"),
            reviewer_role=row.get("reviewer_role"),
        )


@dataclass
class Profile:
    """An actor's profile."""
    id: str
    display_name: Optional[str] = None
    role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(id=data["id"], display_name=data.get("display_name"), role=data.get("role"))


@dataclass
class RoleRecord:
    """Outcome of a role write; persisted=False means local-only."""
    role: str
    persisted: bool


@dataclass
class ReviewSubmission:
    """Raw caller input for a new review."""
    venue_id: str
    user_id: str
    score: Optional[int] = None
    sound_score: Optional[int] = None
    vibe_score: Optional[int] = None
    staff_score: Optional[int] = None
    layout_score: Optional[int] = None
    reviewer_name: Optional[str] = None
    comment: Optional[str] = None
    reviewer_role: Optional[str] = None

    def aspects(self) -> Dict[str, Optional[int]]:
        return {name: getattr(self, name) for name in ASPECT_FIELDS}


@dataclass
class VenueDraft:
    """Caller input for manual venue creation."""
    name: str
    city: str
    country: str = DEFAULT_COUNTRY
    address: Optional[str] = None
    photo_url: Optional[str] = None
    external_ref: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: RemoteCandidate) -> "VenueDraft":
        return cls(
            name=safe_strip(candidate.name),
            city=safe_strip(candidate.city),
            country=safe_strip(candidate.country) or DEFAULT_COUNTRY,
            address=safe_strip(candidate.address) or None,
            photo_url=candidate.photo_url,
            external_ref=candidate.external_ref,
        )


def calculate_overall_score(aspects: Dict[str, Optional[int]]) -> Optional[int]:
    """Rounded mean of the aspect scores; None unless all four are present."""
    values = [aspects.get(name) for name in ASPECT_FIELDS]
    if any(v is None for v in values):
        return None
    return int(math.floor(sum(values) / len(values) + 0.5))
