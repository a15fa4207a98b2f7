"""Heuristics that pick a type and place category for a newly created entity."""

import re
from typing import Optional

from ..enrichment.base import EnrichmentDetails
from ..models import ConnectionRole, EntityType

PERSON_PATTERNS = [
    re.compile(r"^(Mr\.|Mrs\.|Ms\.|Dr\.|Prof\.)"),
    re.compile(r"\b(Jr\.|Sr\.|III|IV)(?!\w)"),
]

ORGANIZATION_KEYWORDS = [
    "corp", "inc", "llc", "ltd", "company", "corporation",
    "institute", "university", "college",
]

PERSON_HINTS = ["human", "person"]
ORGANIZATION_HINTS = ["organization", "company", "corporation", "institution", "business"]
PLACE_HINTS = ["city", "country", "state", "town", "village", "region", "place", "territor"]

COMMON_COUNTRIES = ["united states", "usa", "america", "canada", "mexico"]


def is_person(name: str, details: Optional[EnrichmentDetails] = None) -> bool:
    if details and any(hint in details.type_hints() for hint in PERSON_HINTS):
        return True
    return any(pattern.search(name) for pattern in PERSON_PATTERNS)


def is_organization(name: str, details: Optional[EnrichmentDetails] = None) -> bool:
    if details and any(hint in details.type_hints() for hint in ORGANIZATION_HINTS):
        return True
    words = re.findall(r"\w+", name.lower())
    return any(keyword in words for keyword in ORGANIZATION_KEYWORDS)


def is_place(details: Optional[EnrichmentDetails]) -> bool:
    return bool(details) and any(hint in details.type_hints() for hint in PLACE_HINTS)


def determine_entity_type(
    name: str,
    role: ConnectionRole,
    details: Optional[EnrichmentDetails] = None,
) -> EntityType:
    """Choose the type of an entity created for an unmatched name.

    Location mentions are always places. For actors and targets, enrichment
    hints win, then name patterns; anything undecided is ``unknown``.
    """
    if role == ConnectionRole.LOCATION:
        return EntityType.PLACE
    if is_person(name, details):
        return EntityType.PERSON
    if is_organization(name, details):
        return EntityType.ORGANIZATION
    if is_place(details):
        return EntityType.PLACE
    return EntityType.UNKNOWN


def classify_location(name: str, details: Optional[EnrichmentDetails] = None) -> str:
    """Category of a place: country, state, city or place."""
    if details:
        hints = details.type_hints()
        if "country" in hints:
            return "country"
        if "city" in hints:
            return "city"
        if "state" in hints:
            return "state"

    lowered = name.strip().lower()
    if lowered in COMMON_COUNTRIES:
        return "country"
    if "state" in lowered or "province" in lowered:
        return "state"
    if "city" in lowered or "town" in lowered:
        return "city"
    return "place"
