"""
Pydantic schemas for API request bodies
"""
from pydantic import BaseModel
from typing import Optional

from reportcard.models import DEFAULT_COUNTRY, RemoteCandidate, ReviewSubmission, VenueDraft


# ===== REVIEW SCHEMAS =====

class ReviewCreate(BaseModel):
    """New review; score may be omitted when all four aspects are given"""
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

    def to_submission(self) -> ReviewSubmission:
        return ReviewSubmission(**self.model_dump())


# ===== VENUE SCHEMAS =====

class VenueCreate(BaseModel):
    """Manual venue creation"""
    name: str
    city: str
    country: str = DEFAULT_COUNTRY
    address: Optional[str] = None
    photo_url: Optional[str] = None
    external_ref: Optional[str] = None

    def to_draft(self) -> VenueDraft:
        return VenueDraft(**self.model_dump())


class CandidateIn(BaseModel):
    """A result from /search the user chose to add"""
    name: str
    city: str = ""
    country: str = ""
    address: str = ""
    external_ref: Optional[str] = None
    photo_url: Optional[str] = None
    photo_ref: Optional[str] = None

    def to_candidate(self) -> RemoteCandidate:
        return RemoteCandidate(**self.model_dump())


# ===== PROFILE SCHEMAS =====

class RoleUpdate(BaseModel):
    """Role choice for an actor"""
    user_id: str
    role: str
