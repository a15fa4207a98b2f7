"""Tests for cross-reference analysis."""

import pytest

from kbcore.analysis import AnalysisCache, CrossReferenceAnalyzer
from kbcore.repositories import EntityStore, EventRepository

from conftest import ts


@pytest.fixture
def corpus(make_event):
    return [
        make_event("Alice Okafor", action="met", target="Dana Reyes", locations=["Paris"],
                   date_received=ts(3)),
        make_event("Alice Okafor and Bruno Moreau", action="called", date_received=ts(10)),
        make_event("Dana Reyes", action="met", target="Alice Okafor", date_received=ts(5, month=3)),
        make_event("Greta Novak", action="visited", locations=["Alice Okafor Park"],
                   date_received=ts(7)),
    ]


@pytest.fixture
def analyzer(corpus, seeded_store):
    return CrossReferenceAnalyzer(EventRepository(seeded_store([], corpus)))


class TestRelatedEntities:
    """Test co-occurrence ranking."""

    async def test_ranked_by_count_then_name(self, analyzer):
        related = await analyzer.related_entities("Alice Okafor")

        assert [(r.name, r.count) for r in related] == [
            ("Dana Reyes", 2),
            ("Bruno Moreau", 1),
            ("Paris", 1),
        ]

    async def test_actions_and_last_date(self, analyzer):
        related = await analyzer.related_entities("Alice Okafor")
        dana = related[0]

        assert dana.actions == ["met"]
        assert dana.last_date == ts(5, month=3)

    async def test_case_insensitive(self, analyzer):
        related = await analyzer.related_entities("alice okafor")
        assert related[0].name == "Dana Reyes"

    async def test_top_k(self, analyzer):
        related = await analyzer.related_entities("Alice Okafor", max_results=1)
        assert [r.name for r in related] == ["Dana Reyes"]

    async def test_zero_results_requested(self, analyzer):
        assert await analyzer.related_entities("Alice Okafor", max_results=0) == []

    async def test_negative_results_rejected(self, analyzer):
        with pytest.raises(ValueError):
            await analyzer.related_entities("Alice Okafor", max_results=-1)

    async def test_locations_alone_do_not_qualify(self, analyzer):
        assert await analyzer.related_entities("Paris") == []

    async def test_unknown_entity(self, analyzer):
        assert await analyzer.related_entities("Nobody") == []

    async def test_results_cached_until_invalidated(self, analyzer, make_event):
        first = await analyzer.related_entities("Alice Okafor")
        await analyzer.events.save(make_event("Alice Okafor", target="Hiro Tanaka"))

        assert await analyzer.related_entities("Alice Okafor") is first
        assert analyzer.cache.hits == 1

        assert await analyzer.invalidate("ALICE OKAFOR") == 1
        refreshed = await analyzer.related_entities("Alice Okafor")
        assert "Hiro Tanaka" in [r.name for r in refreshed]

    async def test_expired_entries_recomputed(self, corpus, seeded_store):
        analyzer = CrossReferenceAnalyzer(
            EventRepository(seeded_store([], corpus)), cache=AnalysisCache(ttl=-1)
        )
        first = await analyzer.related_entities("Alice Okafor")
        second = await analyzer.related_entities("Alice Okafor")
        assert first == second
        assert first is not second


class TestConnectionStats:
    """Test aggregate statistics for one entity."""

    @pytest.fixture
    async def stats_analyzer(self, corpus, make_entity, seeded_store):
        store = seeded_store([make_entity("Alice Okafor", aliases=["A. Okafor"], id="p-1")], corpus)
        entities = EntityStore(store)
        await entities.load_all()
        return CrossReferenceAnalyzer(EventRepository(store), entity_store=entities)

    async def test_role_counts_and_actions(self, stats_analyzer):
        stats = await stats_analyzer.connection_stats("p-1")

        assert stats.entity_name == "Alice Okafor"
        assert stats.total_events == 3
        assert stats.as_actor == 2
        assert stats.as_target == 1
        assert stats.as_location == 0
        assert stats.action_types == {"met": 2, "called": 1}

    async def test_timeline(self, stats_analyzer):
        timeline = (await stats_analyzer.connection_stats("p-1")).timeline

        assert timeline.first_event == ts(3)
        assert timeline.last_event == ts(5, month=3)
        assert timeline.span_days == 62
        assert timeline.monthly_activity == {"2024-01": 2, "2024-03": 1}

    async def test_top_related(self, stats_analyzer):
        stats = await stats_analyzer.connection_stats("p-1")
        assert stats.top_related[0].name == "Dana Reyes"

    async def test_unknown_entity(self, stats_analyzer):
        assert await stats_analyzer.connection_stats("missing") is None

    async def test_requires_entity_store(self, analyzer):
        with pytest.raises(RuntimeError):
            await analyzer.connection_stats("p-1")
