# Creation workflows
# Validate → create (idempotent on conflicts) → invalidate caches → background enrichment

from .reviews import ReviewResult, ReviewWorkflow, validate_submission
from .venues import BackgroundJobs, VenueResult, VenueWorkflow, validate_draft
from .profiles import LocalRoleStore, ProfileWorkflow

__all__ = [
    "ReviewResult",
    "ReviewWorkflow",
    "validate_submission",
    "BackgroundJobs",
    "VenueResult",
    "VenueWorkflow",
    "validate_draft",
    "LocalRoleStore",
    "ProfileWorkflow",
]
