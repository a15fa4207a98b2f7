"""Tests for connection recalculation."""

import random

import pytest

from kbcore.models import ConnectionRole, EntityType
from kbcore.resolution.connections import (
    build_name_index,
    changed_entities,
    event_mentions,
    recalculate,
)

from conftest import ts


class TestEventMentions:
    def test_roles_in_field_order(self, make_event):
        event = make_event("Alice Okafor and Bruno Moreau", target="Dana Reyes", locations=["Paris"])

        assert event_mentions(event) == [
            (ConnectionRole.ACTOR, "Alice Okafor"),
            (ConnectionRole.ACTOR, "Bruno Moreau"),
            (ConnectionRole.TARGET, "Dana Reyes"),
            (ConnectionRole.LOCATION, "Paris"),
        ]

    def test_known_names_kept_whole(self, make_event):
        event = make_event("Marks & Spencer and Alice Okafor", target="Smith, Jones, Dana Reyes")
        known = {"marks & spencer", "smith, jones"}

        assert event_mentions(event, known) == [
            (ConnectionRole.ACTOR, "Marks & Spencer"),
            (ConnectionRole.ACTOR, "Alice Okafor"),
            (ConnectionRole.TARGET, "Smith, Jones"),
            (ConnectionRole.TARGET, "Dana Reyes"),
        ]


class TestRecalculate:
    """Test the pure recomputation."""

    def test_actor_target_and_location(self, make_entity, make_event):
        alice = make_entity("Alice Okafor")
        dana = make_entity("Dana Reyes")
        paris = make_entity("Paris", type=EntityType.PLACE)
        event = make_event(
            "Alice Okafor", action="visited", target="Dana Reyes", locations=["Paris"],
            date_received=ts(4),
        )

        connections = recalculate([alice, dana, paris], [event])

        assert [c.role for c in connections[alice.id]] == [ConnectionRole.ACTOR]
        assert [c.role for c in connections[dana.id]] == [ConnectionRole.TARGET]
        assert [c.role for c in connections[paris.id]] == [ConnectionRole.LOCATION]
        connection = connections[alice.id][0]
        assert connection.action == "visited"
        assert connection.timestamp == ts(4)
        assert connection.related_entity_names == ["Dana Reyes", "Paris"]

    def test_alias_and_case_insensitive(self, make_entity, make_event):
        robert = make_entity("Robert Smith", aliases=["Bobby"])
        events = [make_event("bobby"), make_event("ROBERT SMITH")]

        connections = recalculate([robert], events)

        assert len(connections[robert.id]) == 2

    def test_no_partial_matches(self, make_entity, make_event):
        cole = make_entity("Cole")
        connections = recalculate([cole], [make_event("Nicole")])
        assert connections[cole.id] == []

    def test_repeated_name_connects_once_per_role(self, make_entity, make_event):
        alice = make_entity("Alice Okafor")
        event = make_event("Alice Okafor, Alice Okafor", target="Alice Okafor")

        connections = recalculate([alice], [event])

        assert sorted(c.role.value for c in connections[alice.id]) == ["actor", "target"]

    def test_unmentioned_entities_get_empty_lists(self, make_entity):
        alice = make_entity("Alice Okafor")
        assert recalculate([alice], []) == {alice.id: []}

    def test_person_wins_shared_name(self, make_entity, make_event):
        place = make_entity("Jordan", type=EntityType.PLACE)
        person = make_entity("Jordan", type=EntityType.PERSON)

        connections = recalculate([place, person], [make_event("Jordan")])

        assert len(connections[person.id]) == 1
        assert connections[place.id] == []

    def test_name_index_first_entity_wins(self, make_entity):
        first = make_entity("Alex Kim")
        second = make_entity("Alexander Kim", aliases=["Alex Kim"])
        assert build_name_index([first, second])["alex kim"] is first


class TestChangedEntities:
    def test_only_changed_reported(self, make_entity):
        unchanged = make_entity("Alice Okafor")
        before = make_entity("Dana Reyes")
        after = before.model_copy(update={"connection_count": 3})

        assert changed_entities([unchanged, before], [unchanged, after]) == [after]


class TestConnectionRecalculator:
    """Test persisted recalculation through the knowledge base."""

    async def test_recalculate_persists_changes(self, build_kb, make_entity, make_event):
        kb = await build_kb(
            [make_entity("Alice Okafor", id="p-1"), make_entity("Dana Reyes", id="p-2")],
            [make_event("Alice Okafor", target="Dana Reyes", id="e-1")],
        )

        result = await kb.recalculate()

        assert result.entities == 2
        assert result.events == 1
        assert result.connections == 2
        assert sorted(result.changed_entity_ids) == ["p-1", "p-2"]
        assert (await kb.entities.fetch_persisted("p-1")).connection_count == 1
        assert kb.entities.get("p-2").connection_count == 1

    async def test_second_run_commits_nothing(self, build_kb, make_entity, make_event):
        kb = await build_kb(
            [make_entity("Alice Okafor", id="p-1")],
            [make_event("Alice Okafor", id="e-1")],
        )

        await kb.recalculate()
        commits = kb.document_store.commit_count
        result = await kb.recalculate()

        assert result.changed_entity_ids == []
        assert kb.document_store.commit_count == commits


# (name, aliases); no name or alias occurs as a whole word inside another
PEOPLE = [
    ("Alice Okafor", ["Ali Okafor"]),
    ("Bruno Moreau", []),
    ("Chidi Tanaka", ["Dr Tanaka"]),
    ("Okafor, Dana", []),
    ("Emeka Novak", []),
    ("Greta Reyes", ["Gigi Reyes"]),
]
ORGANIZATIONS = [
    ("Marks & Spencer", ["M&S"]),
    ("Johnson and Johnson", []),
    ("Procter + Gamble", []),
    ("Smith, Jones", []),
    ("Acme Corp", []),
]
PLACES = [
    ("Paris", []),
    ("Port Harcourt", ["PH"]),
    ("Leeds", []),
]
ACTIONS = ["met", "called", "visited", "paid"]
JOINERS = [", ", " & ", " and "]


def _build_catalog(make_entity):
    entities = []
    spellings = {}
    for prefix, entity_type, catalog in (
        ("p", EntityType.PERSON, PEOPLE),
        ("o", EntityType.ORGANIZATION, ORGANIZATIONS),
        ("l", EntityType.PLACE, PLACES),
    ):
        for i, (name, aliases) in enumerate(catalog):
            entity = make_entity(name, type=entity_type, aliases=aliases, id=f"{prefix}-{i}")
            entities.append(entity)
            spellings[entity.id] = [name] + aliases
    return entities, spellings


def _random_corpus(rng, entities, spellings, make_event, size=30):
    """Events plus the ids of the entities each one names."""
    parties = [e for e in entities if e.type != EntityType.PLACE]
    places = [e for e in entities if e.type == EntityType.PLACE]

    events = []
    named = {}
    for i in range(size):
        actors = rng.sample(parties, rng.randint(1, 3))
        targets = rng.sample(parties, rng.randint(0, 2))
        locations = rng.sample(places, rng.randint(0, 2))

        event = make_event(
            rng.choice(JOINERS).join(rng.choice(spellings[e.id]) for e in actors),
            action=rng.choice(ACTIONS),
            target=rng.choice(JOINERS).join(rng.choice(spellings[e.id]) for e in targets) or None,
            locations=[rng.choice(spellings[e.id]) for e in locations],
            date_received=ts(rng.randint(1, 28)),
            id=f"e-{i}",
        )
        events.append(event)
        named[event.id] = {e.id for e in actors + targets + locations}
    return events, named


def _assert_counts_match(entities, named):
    """connection_count equals the number of distinct events naming the entity."""
    for entity in entities:
        expected = {event_id for event_id, ids in named.items() if entity.id in ids}
        assert entity.connection_count == len(expected), entity.name
        assert {c.event_id for c in entity.connections} == expected, entity.name


class TestConnectionCountInvariant:
    """Randomized corpora keep counts in line with the events."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    async def test_counts_after_recalculation_and_merges(
        self, seed, build_kb, make_entity, make_event
    ):
        rng = random.Random(seed)
        entities, spellings = _build_catalog(make_entity)
        events, named = _random_corpus(rng, entities, spellings, make_event)

        kb = await build_kb(entities, events)
        await kb.recalculate()
        _assert_counts_match(kb.entities.all(), named)

        for _ in range(4):
            pools = [
                pool for pool in (kb.entities.by_type(t) for t in EntityType) if len(pool) > 1
            ]
            keeper, loser = rng.sample(rng.choice(pools), 2)
            await kb.merge(keeper.id, loser.id)

            for ids in named.values():
                if loser.id in ids:
                    ids.discard(loser.id)
                    ids.add(keeper.id)
            _assert_counts_match(kb.entities.all(), named)

        persisted = [await kb.entities.fetch_persisted(e.id) for e in kb.entities.all()]
        _assert_counts_match(persisted, named)

        await kb.recalculate()
        _assert_counts_match(kb.entities.all(), named)
