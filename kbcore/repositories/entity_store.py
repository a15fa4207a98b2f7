"""In-memory registry of canonical entities backed by the document store."""

import asyncio
from collections import OrderedDict
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors import ErrorContext, PersistenceError, retry_on_error
from ..logging_config import get_logger
from ..models import TYPE_ORDER, DuplicateGroup, Entity, EntityType
from ..resolution.matcher import EntityMatcher
from ..resolution.normalizer import generate_search_variations
from .document_store import DocumentStore, WriteBatch

logger = get_logger(__name__)

CacheKey = Tuple[str, Optional[str]]


class MatchCache:
    """Remembers which entity a name resolved to.

    Only hits are cached. Entries pointing at an entity are dropped by
    ``invalidate`` so a removed entity can never be returned again.
    """

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._entries: "OrderedDict[CacheKey, str]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(name: str, entity_type: Optional[EntityType] = None) -> CacheKey:
        return (name.strip().lower(), EntityType(entity_type).value if entity_type else None)

    def get(self, name: str, entity_type: Optional[EntityType] = None) -> Optional[str]:
        key = self.key(name, entity_type)
        entity_id = self._entries.get(key)
        if entity_id is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return entity_id

    def put(self, name: str, entity_type: Optional[EntityType], entity_id: str) -> None:
        key = self.key(name, entity_type)
        self._entries[key] = entity_id
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, entity_id: str) -> int:
        """Drop every entry resolving to ``entity_id``. Returns how many were dropped."""
        stale = [key for key, cached_id in self._entries.items() if cached_id == entity_id]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class EntityStore:
    """Canonical entities partitioned by type.

    Local lookups go through the matcher over the in-memory pool, which is
    ordered by type (person, organization, place, unknown) and then by
    insertion. Writes to the document store are staged on batches by the
    callers; the local registry is changed through ``insert``, ``update``
    and ``remove`` once those batches have committed.

    ``write_lock`` serializes every read-modify-commit cycle over the graph
    (merges, recalculation and ingestion). A merge rewrites events and
    recomputes connections of every type, so these cycles cannot overlap.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        matcher: Optional[EntityMatcher] = None,
        match_cache: Optional[MatchCache] = None,
    ):
        self.document_store = document_store
        self.matcher = matcher or EntityMatcher()
        self.match_cache = match_cache or MatchCache()
        self._entities: Dict[EntityType, "OrderedDict[str, Entity]"] = {
            entity_type: OrderedDict() for entity_type in TYPE_ORDER
        }
        self.write_lock = asyncio.Lock()

    async def load_all(self) -> int:
        """Replace the local pool with everything persisted. Returns the count."""
        for entity_type in TYPE_ORDER:
            self._entities[entity_type] = OrderedDict(
                (entity.id, entity) for entity in await self._load_collection(entity_type)
            )
        self.match_cache.clear()

        total = sum(len(entities) for entities in self._entities.values())
        logger.info(f"Loaded {total} entities", extra={"entity_count": total})
        return total

    @retry_on_error(max_attempts=3, delay=0.1)
    async def _load_collection(self, entity_type: EntityType) -> List[Entity]:
        with ErrorContext(
            "entities.load", convert_to=PersistenceError, collection=entity_type.collection
        ):
            documents = await self.document_store.list_collection(entity_type.collection)
            return [Entity.from_document(doc) for doc in documents]

    def all(self) -> List[Entity]:
        return list(self._iter_pool())

    def by_type(self, entity_type: EntityType) -> List[Entity]:
        return list(self._entities[EntityType(entity_type)].values())

    def get(self, entity_id: str) -> Optional[Entity]:
        for entities in self._entities.values():
            if entity_id in entities:
                return entities[entity_id]
        return None

    def __len__(self) -> int:
        return sum(len(entities) for entities in self._entities.values())

    def __contains__(self, entity_id: str) -> bool:
        return self.get(entity_id) is not None

    def _iter_pool(self, entity_type: Optional[EntityType] = None) -> Iterator[Entity]:
        types = [EntityType(entity_type)] if entity_type else TYPE_ORDER
        for current in types:
            yield from self._entities[current].values()

    def lookup(self, name: str, entity_type: Optional[EntityType] = None) -> Optional[Entity]:
        """Resolve a name against the local pool.

        Args:
            name: Raw name
            entity_type: Restrict the search to one type

        Returns:
            Matching entity, or None on a miss
        """
        cached_id = self.match_cache.get(name, entity_type)
        if cached_id is not None:
            cached = self.get(cached_id)
            if cached is not None:
                return cached
            self.match_cache.invalidate(cached_id)

        match = self.matcher.find_match(name, self._iter_pool(entity_type))
        if match is not None:
            self.match_cache.put(name, entity_type, match.id)
        return match

    async def lookup_persisted(self, name: str) -> Optional[Entity]:
        """Search the document store for each variation of ``name``.

        Matching ignores case through the stored ``search_names``, like the
        local ``lookup``. Documents written without that field are still
        found by an exact name, then alias, comparison.

        A hit is added to the local pool so later lookups find it directly.
        """
        for entity_type in TYPE_ORDER:
            for variation in generate_search_variations(name):
                lowered = variation.lower()
                queries = (
                    ("search_names", lowered),
                    ("name", variation),
                    ("aliases", variation),
                )
                for field, value in queries:
                    documents = await self._query(entity_type.collection, field, value)
                    if not documents:
                        continue

                    # Name hits before alias hits; sorted() keeps store order otherwise
                    documents = sorted(
                        documents, key=lambda doc: str(doc.get("name", "")).lower() != lowered
                    )
                    entity = Entity.from_document(documents[0])
                    local = self.get(entity.id)
                    if local is not None:
                        return local

                    self._entities[EntityType(entity.type)][entity.id] = entity
                    logger.debug(
                        f"Found persisted entity for '{name}': {entity.name}",
                        extra={"entity_id": entity.id, "matched_on": field},
                    )
                    return entity
        return None

    @retry_on_error(max_attempts=3, delay=0.1)
    async def _query(self, collection: str, field: str, value: str) -> List[Dict]:
        with ErrorContext("entities.query", convert_to=PersistenceError, collection=collection):
            return await self.document_store.query_by_field(collection, field, value)

    def lookup_by_external_id(self, entity_type: EntityType, external_id: str) -> List[Entity]:
        return [
            entity for entity in self._entities[EntityType(entity_type)].values()
            if entity.external_id == external_id
        ]

    def group_by_external_id(self, entity_type: EntityType) -> List[DuplicateGroup]:
        """Duplicate groups of one type: entities sharing a non-null external id.

        Members are ordered oldest first, ties broken by entity id, so the
        keeper of each group is stable across runs.
        """
        grouped: "OrderedDict[str, List[Entity]]" = OrderedDict()
        for entity in self._entities[EntityType(entity_type)].values():
            if entity.external_id:
                grouped.setdefault(entity.external_id, []).append(entity)

        groups = [
            DuplicateGroup(
                external_id=external_id,
                entity_type=entity_type,
                entities=sorted(members, key=lambda e: (e.created_at, e.id)),
            )
            for external_id, members in grouped.items()
            if len(members) > 1
        ]
        return sorted(groups, key=lambda g: (g.keeper.created_at, g.keeper.id))

    def insert(self, entity: Entity) -> Entity:
        entity_type = EntityType(entity.type)
        if entity.id in self._entities[entity_type]:
            raise ValueError(f"Entity already registered: {entity.id}")
        self._entities[entity_type][entity.id] = entity
        # A new entity can outrank a cached derived-variation hit
        self.match_cache.clear()
        return entity

    def update(self, entity: Entity) -> Entity:
        entity_type = EntityType(entity.type)
        existing = self.get(entity.id)
        if existing is not None and EntityType(existing.type) != entity_type:
            del self._entities[EntityType(existing.type)][entity.id]
        self._entities[entity_type][entity.id] = entity
        self.match_cache.clear()
        return entity

    def remove(self, entity_id: str) -> Optional[Entity]:
        """Drop an entity from the local pool and from the match cache."""
        for entities in self._entities.values():
            if entity_id in entities:
                removed = entities.pop(entity_id)
                self.match_cache.invalidate(entity_id)
                return removed
        return None

    def replace_all(self, entities: List[Entity]) -> None:
        """Swap in recomputed versions of existing entities, keeping order."""
        for entity in entities:
            entity_type = EntityType(entity.type)
            if entity.id in self._entities[entity_type]:
                self._entities[entity_type][entity.id] = entity

    def stage_create(self, batch: WriteBatch, entity: Entity) -> None:
        batch.create(entity.collection, entity.id, entity.to_document())

    def stage_update(self, batch: WriteBatch, entity: Entity) -> None:
        batch.update(entity.collection, entity.id, entity.to_document())

    def stage_delete(self, batch: WriteBatch, entity: Entity) -> None:
        batch.delete(entity.collection, entity.id)

    @retry_on_error(max_attempts=3, delay=0.1)
    async def fetch_persisted(self, entity_id: str) -> Optional[Entity]:
        """Load an entity straight from the document store, whatever its type."""
        for entity_type in TYPE_ORDER:
            with ErrorContext(
                "entities.get", convert_to=PersistenceError, entity_id=entity_id
            ):
                document = await self.document_store.get_by_id(entity_type.collection, entity_id)
            if document:
                return Entity.from_document(document)
        return None
