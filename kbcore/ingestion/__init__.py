"""Event ingestion."""

from .classification import classify_location, determine_entity_type
from .processor import EventIngestor

__all__ = ["EventIngestor", "classify_location", "determine_entity_type"]
