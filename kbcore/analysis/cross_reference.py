"""Co-occurrence analysis over the event corpus."""

import math
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from ..logging_config import get_logger
from ..models import ConnectionStats, Event, RelatedEntity, TimelineStats
from ..resolution.normalizer import parse_entity_names
from .cache import AnalysisCache

if TYPE_CHECKING:
    from ..repositories.entity_store import EntityStore
    from ..repositories.events import EventRepository

logger = get_logger(__name__)


def _lower_set(names: List[str]) -> Set[str]:
    return {name.strip().lower() for name in names}


class CrossReferenceAnalyzer:
    """
    Read-only relationship queries over the event corpus.

    Results are cached per (entity name, K) and dropped through
    ``invalidate`` whenever a merge or an ingestion touches the name.
    """

    def __init__(
        self,
        events: "EventRepository",
        entity_store: Optional["EntityStore"] = None,
        cache: Optional[AnalysisCache] = None,
        default_top_k: int = 10,
    ):
        self.events = events
        self.entity_store = entity_store
        self.cache = cache or AnalysisCache()
        self.default_top_k = default_top_k

    async def invalidate(self, entity_name: str) -> int:
        return await self.cache.invalidate(entity_name)

    async def clear_cache(self) -> None:
        await self.cache.clear()

    async def related_entities(
        self, entity_name: str, max_results: Optional[int] = None
    ) -> List[RelatedEntity]:
        """Names that most often share an event with ``entity_name``.

        Only events where the entity is an actor or a target are considered.
        Every other actor, target and location in those events is tallied
        once per event.

        Args:
            entity_name: Name as it appears in events
            max_results: How many to return, defaults to the configured top K.
                Zero returns an empty list.

        Returns:
            Related names by descending co-occurrence count, ties by name
        """
        top_k = self.default_top_k if max_results is None else max_results
        if top_k < 0:
            raise ValueError(f"max_results must not be negative: {top_k}")
        key = AnalysisCache.make_key("related", entity_name, top_k)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        needle = entity_name.strip().lower()
        known = self._known_names()
        events = [
            event for event in await self.events.list_all()
            if needle in self._participants(event, known)
        ]
        related = self._co_occurrences(needle, events, known)[:top_k]

        await self.cache.set(key, related)
        logger.debug(
            f"Computed {len(related)} related entities for '{entity_name}'",
            extra={"events_scanned": len(events)},
        )
        return related

    async def connection_stats(self, entity_id: str) -> Optional[ConnectionStats]:
        """Aggregate involvement of an entity across the corpus.

        Returns None when the entity is unknown.
        """
        if self.entity_store is None:
            raise RuntimeError("connection_stats needs an entity store")

        entity = self.entity_store.get(entity_id) or await self.entity_store.fetch_persisted(
            entity_id
        )
        if entity is None:
            return None

        key = AnalysisCache.make_key("stats", entity.name)
        cached = await self.cache.get(key)
        if cached is not None and cached.entity_id == entity_id:
            return cached

        names = _lower_set(entity.names())
        known = self._known_names()
        stats = ConnectionStats(entity_id=entity.id, entity_name=entity.name)
        involved: List[Event] = []

        for event in await self.events.list_all():
            as_actor = bool(names & _lower_set(parse_entity_names(event.actor, known)))
            as_target = bool(names & _lower_set(parse_entity_names(event.target, known)))
            as_location = bool(names & _lower_set(event.locations))
            if not (as_actor or as_target or as_location):
                continue

            involved.append(event)
            stats.as_actor += as_actor
            stats.as_target += as_target
            stats.as_location += as_location

        stats.total_events = len(involved)
        stats.action_types = self._action_type_stats(involved)
        stats.timeline = self._timeline_stats(involved)
        stats.top_related = await self.related_entities(entity.name, 5)

        await self.cache.set(key, stats)
        return stats

    def _known_names(self) -> Set[str]:
        if self.entity_store is None:
            return set()
        return {name.lower() for entity in self.entity_store.all() for name in entity.names()}

    def _participants(self, event: Event, known: Set[str]) -> Set[str]:
        return _lower_set(
            parse_entity_names(event.actor, known) + parse_entity_names(event.target, known)
        )

    def _co_occurrences(
        self, needle: str, events: List[Event], known: Set[str]
    ) -> List[RelatedEntity]:
        tallies: Dict[str, RelatedEntity] = {}

        for event in events:
            others: Dict[str, str] = {}
            names = (
                parse_entity_names(event.actor, known)
                + parse_entity_names(event.target, known)
                + list(event.locations)
            )
            for name in names:
                if name.strip().lower() != needle:
                    others.setdefault(name.strip().lower(), name.strip())

            for lowered, display in others.items():
                entry = tallies.get(lowered)
                if entry is None:
                    entry = tallies[lowered] = RelatedEntity(name=display, count=0)
                entry.count += 1
                if event.action not in entry.actions:
                    entry.actions.append(event.action)
                if entry.last_date is None or event.date_received > entry.last_date:
                    entry.last_date = event.date_received

        return sorted(tallies.values(), key=lambda entry: (-entry.count, entry.name))

    def _action_type_stats(self, events: List[Event]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for event in events:
            counts[event.action] = counts.get(event.action, 0) + 1
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))

    def _timeline_stats(self, events: List[Event]) -> TimelineStats:
        if not events:
            return TimelineStats()

        dates: List[datetime] = sorted(event.date_received for event in events)
        monthly: Dict[str, int] = {}
        for date in dates:
            month = f"{date.year}-{date.month:02d}"
            monthly[month] = monthly.get(month, 0) + 1

        span = (dates[-1] - dates[0]).total_seconds() / 86400
        return TimelineStats(
            first_event=dates[0],
            last_event=dates[-1],
            span_days=math.ceil(span),
            monthly_activity=monthly,
        )
