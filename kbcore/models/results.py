"""Result models returned by merge, ingestion, recalculation and analysis."""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .entities import EntityType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MergeResult(BaseModel):
    """Outcome of one committed merge."""

    keeper_id: str
    keeper_name: str
    entity_type: EntityType
    loser_ids: List[str]
    loser_names: List[str]
    aliases: List[str] = Field(default_factory=list)
    rewritten_event_ids: List[str] = Field(default_factory=list)
    connection_count: int = 0
    trigger: str = "operator"
    external_id: Optional[str] = None
    merged_at: datetime = Field(default_factory=_utcnow)


class PreviewGroup(BaseModel):
    """A duplicate group as reconciliation would merge it."""

    external_id: str
    entity_type: EntityType
    keeper_id: str
    keeper_name: str
    loser_ids: List[str]
    loser_names: List[str]


class ReconciliationPreview(BaseModel):
    """What a reconciliation run would do, without doing it."""

    groups: List[PreviewGroup] = Field(default_factory=list)

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_losers(self) -> int:
        return sum(len(group.loser_ids) for group in self.groups)

    def by_type(self) -> Dict[str, int]:
        """Number of entities that would be removed, per entity type."""
        counts: Dict[str, int] = {}
        for group in self.groups:
            key = EntityType(group.entity_type).value
            counts[key] = counts.get(key, 0) + len(group.loser_ids)
        return counts


class ReconciliationResult(BaseModel):
    """Outcome of a batch reconciliation run."""

    merges: List[MergeResult] = Field(default_factory=list)
    groups_found: int = 0
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None

    @property
    def merge_count(self) -> int:
        return len(self.merges)

    @property
    def entities_removed(self) -> int:
        return sum(len(merge.loser_ids) for merge in self.merges)

    @property
    def processing_time(self) -> Optional[float]:
        """Total processing time in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class RecalculationResult(BaseModel):
    """Outcome of a full connection recomputation."""

    entities: int = 0
    events: int = 0
    connections: int = 0
    changed_entity_ids: List[str] = Field(default_factory=list)


class ProcessingError(BaseModel):
    """Represents an error during ingestion."""

    stage: str
    entity: Optional[str] = None
    error_type: str
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class IngestionResult(BaseModel):
    """Result of ingesting a single event."""

    event_id: Optional[str] = None
    stored: bool = False
    duplicate: bool = False
    created_entity_ids: List[str] = Field(default_factory=list)
    matched_entity_ids: List[str] = Field(default_factory=list)
    errors: List[ProcessingError] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.stored or self.duplicate

    def add_error(
        self, stage: str, error_type: str, message: str, entity: Optional[str] = None
    ):
        """Add an error to the result."""
        self.errors.append(
            ProcessingError(
                stage=stage, entity=entity, error_type=error_type, message=message
            )
        )


class BatchIngestionResult(BaseModel):
    """Result of ingesting many events."""

    total: int = 0
    stored: int = 0
    duplicates: int = 0
    rejected: int = 0
    results: List[IngestionResult] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Share of rows that were not rejected."""
        if self.total == 0:
            return 0.0
        return (self.total - self.rejected) / self.total


class RelatedEntity(BaseModel):
    """A name co-occurring with the analysed entity."""

    name: str
    count: int
    actions: List[str] = Field(default_factory=list)
    last_date: Optional[datetime] = None


class TimelineStats(BaseModel):
    first_event: Optional[datetime] = None
    last_event: Optional[datetime] = None
    span_days: int = 0
    monthly_activity: Dict[str, int] = Field(default_factory=dict)


class ConnectionStats(BaseModel):
    """Aggregate view of one entity's involvement in the corpus."""

    entity_id: str
    entity_name: str
    total_events: int = 0
    as_actor: int = 0
    as_target: int = 0
    as_location: int = 0
    action_types: Dict[str, int] = Field(default_factory=dict)
    timeline: TimelineStats = Field(default_factory=TimelineStats)
    top_related: List[RelatedEntity] = Field(default_factory=list)
