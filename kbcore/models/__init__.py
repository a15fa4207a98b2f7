"""Data models for the knowledge graph."""

from .entities import (
    ENTITY_COLLECTIONS,
    EVENTS_COLLECTION,
    TYPE_ORDER,
    Connection,
    ConnectionRole,
    DuplicateGroup,
    Entity,
    EntityType,
    Event,
    EventEnvelope,
)
from .results import (
    BatchIngestionResult,
    ConnectionStats,
    IngestionResult,
    MergeResult,
    PreviewGroup,
    ProcessingError,
    RecalculationResult,
    ReconciliationPreview,
    ReconciliationResult,
    RelatedEntity,
    TimelineStats,
)

__all__ = [
    "ENTITY_COLLECTIONS",
    "EVENTS_COLLECTION",
    "TYPE_ORDER",
    "Connection",
    "ConnectionRole",
    "DuplicateGroup",
    "Entity",
    "EntityType",
    "Event",
    "EventEnvelope",
    "BatchIngestionResult",
    "ConnectionStats",
    "IngestionResult",
    "MergeResult",
    "PreviewGroup",
    "ProcessingError",
    "RecalculationResult",
    "ReconciliationPreview",
    "ReconciliationResult",
    "RelatedEntity",
    "TimelineStats",
]
