"""Entity resolution: matching, duplicate detection, rewriting and merging."""

from .connections import ConnectionRecalculator, recalculate
from .event_duplicates import EventDuplicateDetector, events_are_duplicate, is_same_day
from .matcher import EntityMatcher
from .merge import MergeEngine
from .normalizer import (
    clean_entity_name,
    generate_search_variations,
    normalize_locations,
    parse_entity_names,
)
from .rewriter import references_name, rewrite_event

__all__ = [
    "ConnectionRecalculator",
    "EntityMatcher",
    "EventDuplicateDetector",
    "MergeEngine",
    "clean_entity_name",
    "events_are_duplicate",
    "generate_search_variations",
    "is_same_day",
    "normalize_locations",
    "parse_entity_names",
    "recalculate",
    "references_name",
    "rewrite_event",
]
