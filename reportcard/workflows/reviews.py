"""
Review creation with idempotent-create semantics.

One review per (actor, venue). A uniqueness conflict from the backing store
means the actor already reviewed this venue: the existing review is fetched
and returned as a duplicate instead of failing.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from reportcard.cache import ResourceCache
from reportcard.clients import BackingStore
from reportcard.errors import StoreError, StoreErrorKind, ValidationError, WorkflowError
from reportcard.models import (
    ASPECT_FIELDS,
    SCORE_MAX,
    SCORE_MIN,
    Review,
    ReviewerRole,
    ReviewSubmission,
    calculate_overall_score,
)
from reportcard.resources import DIRECTORY_KEY
from reportcard.utils.helpers import race_timeout, safe_strip

logger = logging.getLogger("workflows.reviews")

DUPLICATE_MESSAGE = "You've already left a report card for this venue."


@dataclass
class ReviewResult:
    review: Review
    duplicate: bool = False


def _valid_score(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and SCORE_MIN <= value <= SCORE_MAX


def validate_submission(submission: ReviewSubmission) -> Dict[str, Any]:
    """
    Check caller input and build the row to insert.

    The overall score defaults to the rounded mean of the four aspect scores.

    Raises:
        ValidationError: on the first invalid field
    """
    if not safe_strip(submission.venue_id):
        raise ValidationError("venue_id", "venue_id is required")
    if not safe_strip(submission.user_id):
        raise ValidationError("user_id", "user_id is required")

    aspects = submission.aspects()
    for name in ASPECT_FIELDS:
        value = aspects[name]
        if value is not None and not _valid_score(value):
            raise ValidationError(name, f"{name} must be a number between {SCORE_MIN} and {SCORE_MAX}")

    score = submission.score if submission.score is not None else calculate_overall_score(aspects)
    if not _valid_score(score):
        raise ValidationError("score", f"score must be a number between {SCORE_MIN} and {SCORE_MAX}")

    try:
        role = ReviewerRole.parse(submission.reviewer_role)
    except ValueError:
        raise ValidationError("reviewer_role", 'reviewer_role must be "artist" or "fan"')

    return {
        "venue_id": submission.venue_id.strip(),
        "user_id": submission.user_id.strip(),
        "reviewer_name": safe_strip(submission.reviewer_name) or None,
        "comment": safe_strip(submission.comment) or None,
        "score": score,
        **aspects,
        "reviewer_role": role.value if role else None,
    }


class ReviewWorkflow:
    """Submits reviews and keeps the rating caches honest afterwards."""

    def __init__(
        self,
        store: BackingStore,
        ratings_cache: ResourceCache,
        directory_cache: ResourceCache,
        timeout: float = 15.0,
    ):
        self._store = store
        self._ratings_cache = ratings_cache
        self._directory_cache = directory_cache
        self._timeout = timeout

    async def submit_review(self, submission: ReviewSubmission) -> ReviewResult:
        """
        Create a review, or return the actor's existing one for the venue.

        Returns:
            ReviewResult; duplicate=True when the review already existed

        Raises:
            ValidationError: invalid input, nothing was sent
            WorkflowError: anything else, with a retry-safe message
        """
        row = validate_submission(submission)
        venue_id = row["venue_id"]

        try:
            review = await race_timeout(self._store.create_review(row), self._timeout, "create_review")
        except StoreError as e:
            if e.kind == StoreErrorKind.UNIQUE_VIOLATION:
                logger.info(f"Duplicate review for venue {venue_id} by {row['user_id']}; returning existing")
                return await self._existing_review(venue_id, row["user_id"])
            logger.error(f"Review create failed for venue {venue_id}: {e.kind.value} {e.message}")
            raise WorkflowError() from e
        except asyncio.TimeoutError as e:
            logger.error(f"Review create timed out for venue {venue_id}")
            raise WorkflowError() from e
        except Exception as e:
            logger.exception(f"Unexpected error creating review for venue {venue_id}")
            raise WorkflowError() from e

        self._invalidate(venue_id)
        logger.info(f"Review {review.id} created for venue {venue_id}")
        return ReviewResult(review=review, duplicate=False)

    async def _existing_review(self, venue_id: str, user_id: str) -> ReviewResult:
        try:
            existing: Optional[Review] = await race_timeout(
                self._store.find_review(venue_id, user_id), self._timeout, "find_review"
            )
        except (StoreError, asyncio.TimeoutError) as e:
            logger.error(f"Could not load existing review for venue {venue_id}: {e}")
            raise WorkflowError(DUPLICATE_MESSAGE) from e

        if existing is None:
            raise WorkflowError(DUPLICATE_MESSAGE)
        return ReviewResult(review=existing, duplicate=True)

    def _invalidate(self, venue_id: str) -> None:
        self._ratings_cache.invalidate(venue_id)
        self._directory_cache.invalidate(DIRECTORY_KEY)
