"""Event ingestion: resolve names, create entities, record connections."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pydantic

from ..analysis.cache import AnalysisCache
from ..audit import AuditLogger
from ..enrichment.base import EnrichmentDetails, EnrichmentProvider, NullEnrichmentProvider
from ..errors import PersistenceError
from ..logging_config import Timer, get_logger, log_performance
from ..models import (
    BatchIngestionResult,
    Connection,
    ConnectionRole,
    Entity,
    EntityType,
    Event,
    EventEnvelope,
    IngestionResult,
)
from ..repositories.entity_store import EntityStore
from ..repositories.events import EventRepository
from ..resolution.event_duplicates import EventDuplicateDetector
from ..resolution.matcher import EntityMatcher
from ..resolution.normalizer import normalize_locations
from .classification import classify_location, determine_entity_type

logger = get_logger(__name__)


def related_names_of(envelope: EventEnvelope, event: Event) -> List[str]:
    return list(envelope.actor_names) + list(envelope.target_names) + list(event.locations)


class EventIngestor:
    """Turns validated envelopes into stored events and linked entities.

    Each event is written together with every entity it created or touched
    in a single batch, so an event is never stored without its connections.
    """

    def __init__(
        self,
        entity_store: EntityStore,
        events: EventRepository,
        enrichment: Optional[EnrichmentProvider] = None,
        duplicate_detector: Optional[EventDuplicateDetector] = None,
        analysis_cache: Optional[AnalysisCache] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.entity_store = entity_store
        self.events = events
        self.enrichment = enrichment or NullEnrichmentProvider()
        self.duplicate_detector = duplicate_detector or EventDuplicateDetector(events)
        self.analysis_cache = analysis_cache
        self.audit_logger = audit_logger or AuditLogger()
        self.matcher = EntityMatcher()
        self._session_events: List[Event] = []

    def build_event(self, envelope: EventEnvelope) -> Event:
        """Build the stored event from an envelope.

        Without raw actor or target text the tokenized names are joined with
        ", ". Names that themselves contain a comma or a conjunction, such as
        "Smith, John", are read back whole because recalculation splits
        fields against the known entity names.
        """
        kwargs: Dict[str, Any] = {
            "actor": envelope.actor or ", ".join(envelope.actor_names),
            "action": envelope.action,
            "target": envelope.target or ", ".join(envelope.target_names) or None,
            "locations": normalize_locations(envelope.location_names),
            "sentence": envelope.sentence,
            "date_received": envelope.date_received,
            "processed_datetime": datetime.now(timezone.utc),
        }
        if envelope.event_id:
            kwargs["id"] = envelope.event_id
        return Event(**kwargs)

    async def ingest(self, envelope: EventEnvelope) -> IngestionResult:
        """Ingest one event.

        Args:
            envelope: Validated record with tokenized names

        Returns:
            IngestionResult; ``duplicate`` is set when the event was skipped

        Raises:
            PersistenceError: If the batch could not be committed
        """
        event = self.build_event(envelope)
        result = IngestionResult(event_id=event.id)

        async with self.entity_store.write_lock:
            if await self.duplicate_detector.is_duplicate(event, self._session_events):
                result.duplicate = True
                self.audit_logger.log_ingestion(event.id, "duplicate", reason="duplicate event")
                return result

            touched_entities = await self._store(envelope, event, result)

        await self._invalidate_analysis(related_names_of(envelope, event), touched_entities)
        self.audit_logger.log_ingestion(
            event.id, "stored", created_entity_ids=result.created_entity_ids
        )
        return result

    async def _store(
        self, envelope: EventEnvelope, event: Event, result: IngestionResult
    ) -> List[Entity]:
        """Resolve names, commit the event with its entities, update the local pool."""
        related_names = related_names_of(envelope, event)
        mentions: List[Tuple[ConnectionRole, List[str]]] = [
            (ConnectionRole.ACTOR, envelope.actor_names),
            (ConnectionRole.TARGET, envelope.target_names),
            (ConnectionRole.LOCATION, event.locations),
        ]

        created: Dict[str, Entity] = {}
        touched: Dict[str, Entity] = {}

        for role, names in mentions:
            for name in names:
                entity = await self._resolve(name, created, touched)
                if entity is None:
                    entity = await self._create_entity(name, role, result)
                    created[entity.id] = entity

                entity = self._with_connection(entity, event, role, name, related_names)
                if entity.id in created:
                    created[entity.id] = entity
                else:
                    touched[entity.id] = entity

        batch = self.entity_store.document_store.batch()
        self.events.stage_create(batch, event)
        for entity in created.values():
            self.entity_store.stage_create(batch, entity)
        for entity in touched.values():
            self.entity_store.stage_update(batch, entity)
        await batch.commit()

        for entity in created.values():
            self.entity_store.insert(entity)
        for entity in touched.values():
            self.entity_store.update(entity)
        self._session_events.append(event)

        result.stored = True
        result.created_entity_ids = list(created)
        result.matched_entity_ids = list(touched)
        return [*created.values(), *touched.values()]

    async def ingest_batch(
        self, envelopes: Iterable[Union[EventEnvelope, Dict[str, Any]]]
    ) -> BatchIngestionResult:
        """Ingest many events, skipping rows that fail validation.

        Raises:
            PersistenceError: On the first failed commit; earlier rows stay stored
        """
        batch_result = BatchIngestionResult()

        with Timer() as timer:
            for index, raw in enumerate(envelopes):
                batch_result.total += 1

                if isinstance(raw, EventEnvelope):
                    envelope = raw
                else:
                    try:
                        envelope = EventEnvelope.model_validate(raw)
                    except pydantic.ValidationError as e:
                        batch_result.rejected += 1
                        rejected = IngestionResult()
                        for error in e.errors():
                            field = ".".join(str(part) for part in error["loc"])
                            rejected.add_error(
                                "validation", "invalid_input", f"{field}: {error['msg']}"
                            )
                        batch_result.results.append(rejected)
                        logger.warning(
                            f"Skipping invalid row {index}",
                            extra={"row": index, "errors": len(e.errors())},
                        )
                        self.audit_logger.log_ingestion(
                            f"row-{index}", "rejected", reason=str(e.errors()[0]["msg"])
                        )
                        continue

                try:
                    result = await self.ingest(envelope)
                except PersistenceError:
                    logger.error(f"Persistence failure at row {index}, aborting batch")
                    raise

                batch_result.results.append(result)
                if result.duplicate:
                    batch_result.duplicates += 1
                elif result.stored:
                    batch_result.stored += 1

        batch_result.end_time = datetime.now(timezone.utc)
        log_performance(
            __name__,
            "batch ingestion",
            timer.duration_ms,
            total=batch_result.total,
            stored=batch_result.stored,
        )
        return batch_result

    async def _resolve(
        self, name: str, created: Dict[str, Entity], touched: Dict[str, Entity]
    ) -> Optional[Entity]:
        """Local pending entities, then the store, then persistence."""
        match = self.matcher.find_match(name, created.values())
        if match is not None:
            return created[match.id]

        match = self.entity_store.lookup(name)
        if match is None:
            match = await self.entity_store.lookup_persisted(name)
        if match is None:
            return None
        return touched.get(match.id, match)

    async def _create_entity(
        self, name: str, role: ConnectionRole, result: IngestionResult
    ) -> Entity:
        details = await self._enrich(name, result)
        entity_type = determine_entity_type(name, role, details)

        entity = Entity(name=name, type=entity_type)
        if details is not None:
            entity.external_id = details.external_id
            entity.description = details.description or None
            entity.aliases = [alias for alias in dict.fromkeys(details.aliases) if alias != name]
            entity.attributes = dict(details.attributes)
        if entity_type == EntityType.PLACE:
            entity.category = classify_location(name, details)

        logger.info(
            f"Creating new {entity_type.value}: {name}",
            extra={"entity_id": entity.id, "enriched": details is not None},
        )
        return entity

    async def _enrich(self, name: str, result: IngestionResult) -> Optional[EnrichmentDetails]:
        try:
            return await self.enrichment.enrich(name)
        except Exception as e:
            # Entity creation proceeds with the bare name
            logger.warning(f"Enrichment failed for '{name}': {e}")
            result.add_error("enrichment", type(e).__name__, str(e), entity=name)
            return None

    def _with_connection(
        self,
        entity: Entity,
        event: Event,
        role: ConnectionRole,
        name: str,
        related_names: List[str],
    ) -> Entity:
        if any(c.event_id == event.id and c.role == role for c in entity.connections):
            return entity

        connection = Connection(
            event_id=event.id,
            role=role,
            action=event.action,
            timestamp=event.date_received,
            related_entity_names=[other for other in related_names if other != name],
        )
        connections = entity.connections + [connection]
        return entity.model_copy(
            update={
                "connections": connections,
                "connection_count": len({c.event_id for c in connections}),
            }
        )

    async def _invalidate_analysis(self, names: List[str], entities: List[Entity]) -> None:
        if self.analysis_cache is None:
            return
        touched = set(names)
        for entity in entities:
            touched.update(entity.names())
        for name in touched:
            await self.analysis_cache.invalidate(name)
