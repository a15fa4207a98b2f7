"""Full recomputation of entity connections from the event corpus."""

from typing import TYPE_CHECKING, Container, Dict, Iterable, List, Optional, Set, Tuple

from ..audit import AuditLogger
from ..logging_config import Timer, get_logger, log_performance
from ..models import (
    TYPE_ORDER,
    Connection,
    ConnectionRole,
    Entity,
    EntityType,
    Event,
    RecalculationResult,
)
from .normalizer import parse_entity_names

if TYPE_CHECKING:
    from ..repositories.document_store import WriteBatch
    from ..repositories.entity_store import EntityStore
    from ..repositories.events import EventRepository

logger = get_logger(__name__)


def event_mentions(
    event: Event, known_names: Optional[Container[str]] = None
) -> List[Tuple[ConnectionRole, str]]:
    """Every (role, name) pair an event mentions, in field order.

    ``known_names`` holds lowercased entity names and aliases; those that
    contain a comma or a conjunction are read as one name.
    """
    mentions = [
        (ConnectionRole.ACTOR, name) for name in parse_entity_names(event.actor, known_names)
    ]
    mentions.extend(
        (ConnectionRole.TARGET, name) for name in parse_entity_names(event.target, known_names)
    )
    mentions.extend((ConnectionRole.LOCATION, name) for name in event.locations)
    return mentions


def _ordered_pool(entities: Iterable[Entity]) -> List[Entity]:
    entities = list(entities)
    rank = {entity_type: index for index, entity_type in enumerate(TYPE_ORDER)}
    # sorted() is stable, so store order survives within a type
    return sorted(entities, key=lambda entity: rank[EntityType(entity.type)])


def build_name_index(entities: Iterable[Entity]) -> Dict[str, Entity]:
    """Map lowercased names and aliases to the first entity carrying them."""
    index: Dict[str, Entity] = {}
    for entity in _ordered_pool(entities):
        for name in entity.names():
            index.setdefault(name.lower(), entity)
    return index


def recalculate(entities: Iterable[Entity], events: Iterable[Event]) -> Dict[str, List[Connection]]:
    """Rebuild every entity's connections from scratch.

    Each name found in an event's actor, target and locations is resolved
    by exact, case-insensitive equality with an entity name or alias. An
    entity gets one connection per event and role, however often the name
    repeats inside the field.

    Args:
        entities: The full entity pool
        events: The full event corpus

    Returns:
        Connections keyed by entity id, with an empty list for every entity
        no event mentions
    """
    entities = list(entities)
    index = build_name_index(entities)
    connections: Dict[str, List[Connection]] = {entity.id: [] for entity in entities}
    seen: Set[Tuple[str, str, ConnectionRole]] = set()

    for event in events:
        mentions = event_mentions(event, index)
        names = [name for _, name in mentions]

        for role, name in mentions:
            entity = index.get(name.strip().lower())
            if entity is None:
                continue

            key = (entity.id, event.id, role)
            if key in seen:
                continue
            seen.add(key)

            connections[entity.id].append(
                Connection(
                    event_id=event.id,
                    role=role,
                    action=event.action,
                    timestamp=event.date_received,
                    related_entity_names=[other for other in names if other != name],
                )
            )

    return connections


def count_events(connections: List[Connection]) -> int:
    """Number of distinct events among a set of connections."""
    return len({connection.event_id for connection in connections})


def apply_recalculation(entities: Iterable[Entity], events: Iterable[Event]) -> List[Entity]:
    """Copies of ``entities`` carrying freshly computed connections and counts."""
    entities = list(entities)
    computed = recalculate(entities, events)
    return [
        entity.model_copy(
            update={
                "connections": computed[entity.id],
                "connection_count": count_events(computed[entity.id]),
            }
        )
        for entity in entities
    ]


def changed_entities(before: Iterable[Entity], after: Iterable[Entity]) -> List[Entity]:
    """Entities in ``after`` whose connections differ from ``before``."""
    previous = {entity.id: entity for entity in before}
    changed = []
    for entity in after:
        old = previous.get(entity.id)
        if (
            old is None
            or old.connection_count != entity.connection_count
            or old.connections != entity.connections
        ):
            changed.append(entity)
    return changed


class ConnectionRecalculator:
    """Runs the recomputation against the stores and persists the result."""

    def __init__(
        self,
        entity_store: "EntityStore",
        events: "EventRepository",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.entity_store = entity_store
        self.events = events
        self.audit_logger = audit_logger or AuditLogger()

    def stage(
        self,
        entities: List[Entity],
        events: List[Event],
        batch: "WriteBatch",
    ) -> List[Entity]:
        """Compute connections and stage updates for every entity that changed.

        Returns the recomputed entities; nothing is applied locally.
        """
        updated = apply_recalculation(entities, events)
        for entity in changed_entities(entities, updated):
            self.entity_store.stage_update(batch, entity)
        return updated

    async def recalculate_all(self) -> RecalculationResult:
        """Recompute from the persisted corpus and commit in one batch."""
        with Timer() as timer:
            async with self.entity_store.write_lock:
                events = await self.events.list_all()
                entities = self.entity_store.all()

                batch = self.entity_store.document_store.batch()
                updated = self.stage(entities, events, batch)
                changed = changed_entities(entities, updated)

                if len(batch):
                    await batch.commit()
                self.entity_store.replace_all(updated)

        result = RecalculationResult(
            entities=len(updated),
            events=len(events),
            connections=sum(len(entity.connections) for entity in updated),
            changed_entity_ids=[entity.id for entity in changed],
        )
        log_performance(
            __name__,
            "connection recalculation",
            timer.duration_ms,
            entities=result.entities,
            events=result.events,
        )
        self.audit_logger.log_recalculation(
            entities=result.entities, events=result.events, changed=len(changed)
        )
        return result
