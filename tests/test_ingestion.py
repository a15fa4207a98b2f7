"""Tests for event ingestion."""

from unittest.mock import AsyncMock

import pytest

from kbcore.enrichment import EnrichmentDetails
from kbcore.errors import PersistenceError
from kbcore.ingestion import EventIngestor
from kbcore.ingestion.classification import classify_location, determine_entity_type
from kbcore.models import ConnectionRole, EntityType, EventEnvelope

from conftest import ts


def envelope(**overrides):
    data = {
        "actor_names": ["Alice Okafor"],
        "action": "met",
        "target_names": ["Dana Reyes"],
        "sentence": "Alice Okafor met Dana Reyes on Tuesday",
        "date_received": ts(2),
    }
    data.update(overrides)
    return EventEnvelope(**data)


class TestClassification:
    """Test type and category heuristics."""

    def test_location_role_is_place(self):
        assert determine_entity_type("Acme Corp", ConnectionRole.LOCATION) == EntityType.PLACE

    def test_name_patterns(self):
        assert determine_entity_type("Dr. Jane Doe", ConnectionRole.ACTOR) == EntityType.PERSON
        assert determine_entity_type("Acme Corp", ConnectionRole.ACTOR) == EntityType.ORGANIZATION
        assert determine_entity_type("Zorblax", ConnectionRole.ACTOR) == EntityType.UNKNOWN

    def test_keywords_match_whole_words(self):
        assert determine_entity_type("Vincent Price", ConnectionRole.ACTOR) == EntityType.UNKNOWN

    def test_enrichment_hints(self):
        human = EnrichmentDetails(external_id="Q1", instance_of=["human"])
        city = EnrichmentDetails(external_id="Q2", instance_of=["big city"])

        assert determine_entity_type("Zorblax", ConnectionRole.TARGET, human) == EntityType.PERSON
        assert determine_entity_type("Leeds", ConnectionRole.ACTOR, city) == EntityType.PLACE

    def test_classify_location(self):
        assert classify_location("Canada") == "country"
        assert classify_location("Ohio State") == "state"
        assert classify_location("Leeds") == "place"
        assert classify_location("Leeds", EnrichmentDetails(external_id="Q3", instance_of=["city"])) == "city"


class TestEventIngestor:
    """Test ingestion through the knowledge base."""

    async def test_creates_entities_and_connections(self, build_kb):
        kb = await build_kb()

        result = await kb.ingestor.ingest(envelope(location_names=["Paris"]))

        assert result.stored
        assert len(result.created_entity_ids) == 3
        alice = kb.entities.lookup("Alice Okafor")
        paris = kb.entities.lookup("Paris")
        assert alice.connection_count == 1
        assert alice.connections[0].role == ConnectionRole.ACTOR
        assert alice.connections[0].related_entity_names == ["Dana Reyes", "Paris"]
        assert alice.aliases == []
        assert paris.type == EntityType.PLACE
        assert paris.category == "place"

        stored = await kb.events.get(result.event_id)
        assert stored.actor == "Alice Okafor"
        assert stored.target == "Dana Reyes"
        assert stored.locations == ["Paris"]
        assert stored.processed_datetime is not None

    async def test_existing_entity_matched_by_alias(self, build_kb, make_entity):
        kb = await build_kb([make_entity("Robert Smith", aliases=["Bobby"], id="p-1")])

        result = await kb.ingestor.ingest(envelope(actor_names=["bobby"], target_names=[]))

        assert result.created_entity_ids == []
        assert result.matched_entity_ids == ["p-1"]
        persisted = await kb.entities.fetch_persisted("p-1")
        assert persisted.connection_count == 1

    async def test_names_containing_separators_survive_recalculation(self, build_kb):
        kb = await build_kb()
        await kb.ingestor.ingest(
            envelope(
                actor_names=["Marks & Spencer", "Alice Okafor"],
                target_names=["Smith, John"],
            )
        )
        names = ["Marks & Spencer", "Alice Okafor", "Smith, John"]
        ids = {name: kb.entities.lookup(name).id for name in names}

        stored = (await kb.events.list_all())[0]
        assert stored.actor == "Marks & Spencer, Alice Okafor"
        assert stored.target == "Smith, John"

        result = await kb.recalculate()

        assert result.changed_entity_ids == []
        for name in names:
            assert kb.entities.get(ids[name]).connection_count == 1, name
            assert (await kb.entities.fetch_persisted(ids[name])).connection_count == 1, name
        related = [entry.name for entry in await kb.related("Alice Okafor")]
        assert sorted(related) == ["Marks & Spencer", "Smith, John"]

    async def test_same_name_twice_in_event_creates_one_entity(self, build_kb):
        kb = await build_kb()

        result = await kb.ingestor.ingest(
            envelope(actor_names=["Alice Okafor"], target_names=["Alice Okafor"])
        )

        assert len(result.created_entity_ids) == 1
        alice = kb.entities.lookup("Alice Okafor")
        assert {c.role for c in alice.connections} == {ConnectionRole.ACTOR, ConnectionRole.TARGET}
        assert alice.connection_count == 1

    async def test_duplicate_sentence_skipped(self, build_kb):
        kb = await build_kb()
        first = envelope(sentence="X met Y on Tuesday")
        again = envelope(sentence="X met Y on Tuesday", date_received=ts(20))

        batch = await kb.ingest([first, again])

        assert batch.stored == 1
        assert batch.duplicates == 1
        assert len(await kb.events.list_all()) == 1
        assert kb.entities.lookup("Alice Okafor").connection_count == 1

    async def test_duplicate_detected_across_runs(self, build_kb):
        kb = await build_kb()
        await kb.ingest([envelope(sentence="X met Y on Tuesday")])

        fresh = EventIngestor(kb.entities, kb.events)
        result = await fresh.ingest(envelope(sentence="X met Y on Tuesday", date_received=ts(9)))

        assert result.duplicate
        assert not result.stored
        assert len(await kb.events.list_all()) == 1

    async def test_same_day_same_fields_is_duplicate(self, build_kb):
        kb = await build_kb()

        batch = await kb.ingest([
            envelope(sentence="", date_received=ts(2, 8)),
            envelope(sentence="", date_received=ts(2, 19)),
            envelope(sentence="", date_received=ts(3, 8)),
        ])

        assert batch.stored == 2
        assert batch.duplicates == 1

    async def test_enrichment_applied(self, build_kb):
        paris_details = EnrichmentDetails(
            external_id="Q90",
            description="capital of France",
            aliases=["City of Light", "Paris"],
            instance_of=["city"],
            attributes={"population": 2148000},
        )
        provider = AsyncMock()
        provider.enrich.side_effect = lambda name: paris_details if name == "Paris" else None
        kb = await build_kb(enrichment=provider)

        await kb.ingestor.ingest(envelope(target_names=[], location_names=["Paris"]))

        paris = kb.entities.lookup("Paris")
        assert paris.external_id == "Q90"
        assert paris.aliases == ["City of Light"]
        assert paris.category == "city"
        assert paris.attributes["population"] == 2148000
        assert kb.entities.lookup("City of Light") is paris

    async def test_enrichment_failure_does_not_block(self, build_kb):
        provider = AsyncMock()
        provider.enrich.side_effect = RuntimeError("service down")
        kb = await build_kb(enrichment=provider)

        result = await kb.ingestor.ingest(envelope())

        assert result.stored
        assert len(result.created_entity_ids) == 2
        assert [e.stage for e in result.errors] == ["enrichment", "enrichment"]
        assert kb.entities.lookup("Alice Okafor").external_id is None

    async def test_invalid_rows_rejected(self, build_kb):
        kb = await build_kb()

        batch = await kb.ingest([
            {"actor_names": [], "action": "met", "date_received": "2024-01-02T00:00:00Z"},
            {"actor_names": ["Alice Okafor"], "action": "", "date_received": "2024-01-02"},
            {"actor_names": ["Alice Okafor"], "action": "met", "date_received": "not a date"},
            {"actor_names": ["Alice Okafor"], "action": "met", "date_received": "2024-01-02T10:00:00Z"},
        ])

        assert batch.total == 4
        assert batch.rejected == 3
        assert batch.stored == 1
        assert batch.success_rate == pytest.approx(0.25)
        assert batch.results[0].errors[0].stage == "validation"

    async def test_persistence_failure_stores_nothing(self, build_kb):
        kb = await build_kb()
        kb.document_store.inject_failure(times=1)

        with pytest.raises(PersistenceError):
            await kb.ingest([envelope()])

        assert await kb.events.list_all() == []
        assert len(kb.entities) == 0
        assert kb.entities.lookup("Alice Okafor") is None

    async def test_ingestion_invalidates_analysis(self, build_kb):
        kb = await build_kb()
        await kb.ingest([envelope(sentence="first")])
        assert [r.name for r in await kb.related("Alice Okafor")] == ["Dana Reyes"]

        await kb.ingest([envelope(target_names=["Hiro Tanaka"], sentence="second", date_received=ts(5))])

        names = [r.name for r in await kb.related("Alice Okafor")]
        assert names == ["Dana Reyes", "Hiro Tanaka"]

    async def test_audit_entries(self, build_kb, audit_logger):
        kb = await build_kb()
        await kb.ingest([envelope(), envelope()])

        decisions = [e["decision"] for e in audit_logger.get_audit_trail({"event_type": "ingestion"})]
        assert decisions == ["stored", "duplicate"]
