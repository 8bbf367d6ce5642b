# Entity resolution
# Venue keys → lookup of local venues → candidate resolution; plus query intent for the external search

from .normalizer import normalize, full_key, name_only_key, name_without_place_key
from .matcher import (
    CandidateAction,
    CandidateMatch,
    MatchLevel,
    build_lookup,
    classify,
    resolve,
    resolve_with_level,
)
from .query_intent import QueryIntent, QueryKind, classify_query, filter_results

__all__ = [
    "normalize",
    "full_key",
    "name_only_key",
    "name_without_place_key",
    "CandidateAction",
    "CandidateMatch",
    "MatchLevel",
    "build_lookup",
    "classify",
    "resolve",
    "resolve_with_level",
    "QueryIntent",
    "QueryKind",
    "classify_query",
    "filter_results",
]
