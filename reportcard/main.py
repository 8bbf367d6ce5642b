"""
Venue Report Card - JSON API over the client sync layer
Caches, identity and creation workflows live in the application context
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from config.settings import settings
from reportcard.context import close_context, get_context
from reportcard.errors import StoreError, ValidationError, WorkflowError
from reportcard.matching import build_lookup, classify, classify_query, filter_results
from reportcard.matching.query_intent import QueryKind
from reportcard.resources import split_my_review
from reportcard.schemas import CandidateIn, ReviewCreate, RoleUpdate, VenueCreate

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Venue Report Card"

SEARCH_ERROR_MESSAGE = "There was a problem searching venues."


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_context()


app = FastAPI(
    title=APP_NAME,
    description="Venue ratings with cached reads and idempotent creation",
    version=APP_VERSION,
    lifespan=lifespan,
)


def _validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": e.message, "field": e.field})


def _workflow_error(e: WorkflowError) -> HTTPException:
    return HTTPException(status_code=502, detail={"error": e.message})


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "mode": "live"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats():
    """Get cache statistics."""
    return get_context().get_stats()


@app.get("/identity")
async def identity():
    """Establish (once) and return the anonymous identity."""
    ctx = get_context()
    await ctx.identity.ensure()
    return ctx.identity.status().to_dict()


@app.get("/venues")
async def list_venues(refresh: bool = Query(False, description="Bypass the freshness window")):
    """Venue directory with rating stats."""
    reader = get_context().directory()
    state = await (reader.refetch() if refresh else reader.load())
    if state.data is None and state.error:
        raise HTTPException(status_code=502, detail={"error": state.error})
    return {
        "data": [v.to_dict() for v in state.data or []],
        "error": state.error,
        "stale": state.stale,
    }


@app.get("/venues/{venue_id}/reviews")
async def venue_reviews(
    venue_id: str,
    user_id: Optional[str] = Query(None, description="Viewer, to pick out their own review"),
    refresh: bool = Query(False),
):
    """Reviews of one venue, split into the viewer's review and the rest."""
    reader = get_context().ratings(venue_id)
    state = await (reader.refetch() if refresh else reader.load())
    if state.data is None and state.error:
        raise HTTPException(status_code=502, detail={"error": state.error})
    mine, others = split_my_review(state.data or [], user_id)
    return {
        "my_review": mine.to_dict() if mine else None,
        "reviews": [r.to_dict() for r in others],
        "error": state.error,
        "stale": state.stale,
    }


@app.get("/profiles/{user_id}")
async def get_profile(user_id: str):
    """Profile of an actor (created on first read) and the role in effect."""
    ctx = get_context()
    state = await ctx.profile(user_id).load()
    return {
        "profile": state.data.to_dict() if state.data else None,
        "role": ctx.profiles.effective_role(user_id, state.data),
        "error": state.error,
    }


@app.get("/search")
async def search_venues(
    q: str = Query("", description="Venue or place name"),
    city: str = Query("", description="Selected place filter"),
):
    """
    Search the external directory and resolve results against known venues.

    Example: /search?q=bowery+ballroom&city=New+York
    """
    intent = classify_query(q, city)
    if intent.kind == QueryKind.EMPTY:
        return {"kind": intent.kind.value, "results": []}

    ctx = get_context()
    try:
        candidates = await ctx.places.text_search(intent.provider_query)
    except StoreError as e:
        logger.error(f"Search failed for '{intent.provider_query}': {e.message}")
        raise HTTPException(status_code=502, detail={"error": SEARCH_ERROR_MESSAGE})

    directory = await ctx.directory().load()
    matches = classify(filter_results(intent, candidates), build_lookup(directory.data or []))
    return {
        "kind": intent.kind.value,
        "query": intent.provider_query,
        "results": [
            {
                "name": m.candidate.name,
                "city": m.candidate.city,
                "country": m.candidate.country,
                "address": m.candidate.address,
                "external_ref": m.candidate.external_ref,
                "photo_ref": m.candidate.photo_ref,
                "local_id": m.local_id,
                "action": m.action.value,
            }
            for m in matches
        ],
    }


@app.post("/venues", status_code=201)
async def create_venue(body: VenueCreate):
    """Add a venue by hand."""
    try:
        result = await get_context().venues.create_venue(body.to_draft())
    except ValidationError as e:
        raise _validation_error(e)
    except WorkflowError as e:
        raise _workflow_error(e)
    return {"id": result.venue_id, "created": result.created}


@app.post("/venues/from-candidate")
async def create_venue_from_candidate(body: CandidateIn):
    """Add a search result, or point at the venue we already have for it."""
    ctx = get_context()
    candidate = body.to_candidate()
    # Search results carry only the photo reference; the keyed URL stays server side
    if candidate.photo_ref and not candidate.photo_url:
        candidate.photo_url = ctx.places.photo_url(candidate.photo_ref)
    directory = await ctx.directory().load()
    try:
        result = await ctx.venues.create_venue_from_candidate(candidate, directory.data or [])
    except ValidationError as e:
        raise _validation_error(e)
    except WorkflowError as e:
        raise _workflow_error(e)
    return {"id": result.venue_id, "created": result.created}


@app.post("/reviews")
async def create_review(body: ReviewCreate):
    """Submit a review; resubmitting returns the existing one."""
    try:
        result = await get_context().reviews.submit_review(body.to_submission())
    except ValidationError as e:
        raise _validation_error(e)
    except WorkflowError as e:
        raise _workflow_error(e)
    return {"data": result.review.to_dict(), "duplicate": result.duplicate}


@app.post("/profiles/role")
async def set_role(body: RoleUpdate):
    """Choose artist or fan; falls back to local storage when blocked."""
    try:
        record = await get_context().profiles.set_role(body.user_id, body.role)
    except ValidationError as e:
        raise _validation_error(e)
    except WorkflowError as e:
        raise _workflow_error(e)
    return {"data": {"role": record.role, "persisted": record.persisted}}
