"""Venue key normalization for cross-source matching."""

import re


# Articles dropped from the start of a name before comparison
LEADING_ARTICLES = ("the ",)

KEY_SEPARATOR = "|"


def normalize(text: str | None) -> str:
    """
    Normalize text for key comparison.

    Steps:
    1. Strip whitespace and lowercase
    2. Drop one leading article ("the ")
    3. Replace every run of non-alphanumerics with a single space
    4. Strip again
    """
    if not text:
        return ""
    normalized = text.strip().lower()
    for article in LEADING_ARTICLES:
        if normalized.startswith(article):
            normalized = normalized[len(article):]
    normalized = re.sub(r"[^a-z0-9]+", " ", normalized)
    return normalized.strip()


def full_key(name: str | None, place: str | None) -> str:
    """
    Most specific key: name and place normalized independently.

    Example: ("The Bowery Ballroom", "New York") → "bowery ballroom|new york"
    """
    return f"{normalize(name)}{KEY_SEPARATOR}{normalize(place)}"


def name_only_key(name: str | None) -> str:
    """Key ignoring place, for when one side's place is missing or unreliable."""
    return full_key(name, "")


def name_without_place_key(name: str | None, place: str | None) -> str:
    """
    Name-only key after removing the place from inside the name.

    Handles provider names that embed the city, e.g.
    ("House of Blues Chicago", "Chicago") → "house of blues|"
    """
    norm_name = normalize(name)
    norm_place = normalize(place)

    if not norm_place:
        return name_only_key(name)
    if not norm_name:
        return full_key("", "")

    if norm_name.endswith(f" {norm_place}"):
        stripped = norm_name[: -len(norm_place) - 1].strip()
    elif norm_name == norm_place:
        stripped = ""
    else:
        stripped = norm_name.replace(norm_place, "", 1)
        stripped = re.sub(r"\s+", " ", stripped).strip()

    return full_key(stripped, "")
