"""Shared fixtures for kbcore tests."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from kbcore.audit import AuditLogger
from kbcore.config import Config
from kbcore.knowledge_base import KnowledgeBase
from kbcore.models import EVENTS_COLLECTION, Entity, EntityType, Event
from kbcore.repositories import InMemoryDocumentStore


def ts(day: int, hour: int = 0, month: int = 1, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def make_entity():
    """Factory for entities with predictable ids and creation times."""
    counter = {"n": 0}

    def _make(
        name: str,
        type: EntityType = EntityType.PERSON,
        external_id: Optional[str] = None,
        aliases: Optional[List[str]] = None,
        created_at: Optional[datetime] = None,
        id: Optional[str] = None,
        **kwargs,
    ) -> Entity:
        counter["n"] += 1
        return Entity(
            id=id or f"ent-{counter['n']:03d}",
            name=name,
            type=type,
            external_id=external_id,
            aliases=aliases or [],
            created_at=created_at or ts(1, counter["n"] % 24),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_event():
    """Factory for events with predictable ids."""
    counter = {"n": 0}

    def _make(
        actor: str,
        action: str = "met",
        target: Optional[str] = None,
        locations: Optional[List[Any]] = None,
        sentence: str = "",
        date_received: Optional[datetime] = None,
        id: Optional[str] = None,
    ) -> Event:
        counter["n"] += 1
        return Event(
            id=id or f"evt-{counter['n']:03d}",
            actor=actor,
            action=action,
            target=target,
            locations=locations or [],
            sentence=sentence,
            date_received=date_received or ts(10),
        )

    return _make


def seed_collections(entities: List[Entity], events: List[Event]) -> Dict[str, Dict[str, Dict]]:
    collections: Dict[str, Dict[str, Dict]] = {}
    for entity in entities:
        collections.setdefault(entity.collection, {})[entity.id] = entity.to_document()
    for event in events:
        collections.setdefault(EVENTS_COLLECTION, {})[event.id] = event.to_document()
    return collections


@pytest.fixture
def seeded_store():
    """Factory for an in-memory document store holding the given records."""

    def _make(entities: List[Entity], events: Optional[List[Event]] = None) -> InMemoryDocumentStore:
        return InMemoryDocumentStore(initial=seed_collections(entities, events or []))

    return _make


@pytest.fixture
def audit_logger():
    return AuditLogger(logger_name="kbcore.audit.test")


@pytest.fixture
def memory_config():
    return Config(storage={"backend": "memory"})


@pytest.fixture
def build_kb(seeded_store, memory_config, audit_logger):
    """Factory for an opened KnowledgeBase over seeded in-memory data."""

    async def _build(
        entities: Optional[List[Entity]] = None,
        events: Optional[List[Event]] = None,
        enrichment=None,
    ) -> KnowledgeBase:
        kb = KnowledgeBase(
            config=memory_config,
            document_store=seeded_store(entities or [], events or []),
            enrichment=enrichment,
            audit_logger=audit_logger,
        )
        return await kb.open()

    return _build


@pytest.fixture
def acme_records(make_entity, make_event):
    """Two organizations sharing an external id, each named by one event."""
    corp = make_entity(
        "Acme Corp", type=EntityType.ORGANIZATION, external_id="Q1", created_at=ts(1), id="org-corp"
    )
    corporation = make_entity(
        "Acme Corporation",
        type=EntityType.ORGANIZATION,
        external_id="Q1",
        created_at=ts(2),
        id="org-corporation",
    )
    events = [
        make_event(
            "Acme Corp",
            action="announced",
            sentence="Acme Corp announced a new plant.",
            date_received=ts(3),
            id="evt-corp",
        ),
        make_event(
            "Acme Corporation",
            action="hired",
            target="Jane Doe",
            sentence="Acme Corporation hired Jane Doe.",
            date_received=ts(4),
            id="evt-corporation",
        ),
    ]
    return [corp, corporation], events
