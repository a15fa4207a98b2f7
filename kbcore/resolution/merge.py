"""
Merge Engine

Folds duplicate entities into a single keeper, either in batch (entities
sharing an external identifier) or on operator request. Every merge
rewrites the event text that named the losers, deletes the losers and
recomputes all connections, and commits all of it as one batch.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from ..audit import AuditLogger
from ..errors import (
    EntityNotFoundError,
    MergeTransactionError,
    MergeValidationError,
)
from ..logging_config import get_logger, log_context
from ..models import (
    TYPE_ORDER,
    DuplicateGroup,
    Entity,
    EntityType,
    Event,
    MergeResult,
    PreviewGroup,
    ReconciliationPreview,
    ReconciliationResult,
)
from .connections import ConnectionRecalculator, build_name_index, event_mentions
from .rewriter import references_name, rewrite_event

if TYPE_CHECKING:
    from ..analysis.cache import AnalysisCache
    from ..repositories.entity_store import EntityStore
    from ..repositories.events import EventRepository

logger = get_logger(__name__)


def merge_aliases(keeper: Entity, losers: List[Entity]) -> List[str]:
    """Keeper aliases, then each loser's aliases and name, without repeats.

    The keeper's own name is never listed as its alias.
    """
    aliases: List[str] = []
    for alias in keeper.aliases:
        if alias not in aliases and alias != keeper.name:
            aliases.append(alias)
    for loser in losers:
        for alias in loser.aliases + [loser.name]:
            if alias not in aliases and alias != keeper.name:
                aliases.append(alias)
    return aliases


def build_merged_keeper(keeper: Entity, losers: List[Entity]) -> Entity:
    """The keeper as it looks after absorbing the losers, before recomputation."""
    update: Dict[str, Any] = {
        "aliases": merge_aliases(keeper, losers),
        "connections": keeper.connections + [c for loser in losers for c in loser.connections],
        "last_deduplication": datetime.now(timezone.utc),
    }

    # Fill blanks on the keeper from the losers, oldest loser first
    for field in ("external_id", "description", "category"):
        if getattr(keeper, field) is None:
            for loser in losers:
                if getattr(loser, field) is not None:
                    update[field] = getattr(loser, field)
                    break

    attributes = dict(keeper.attributes)
    for loser in losers:
        for key, value in loser.attributes.items():
            attributes.setdefault(key, value)
    update["attributes"] = attributes

    merged = keeper.model_copy(update=update, deep=True)
    merged.connection_count = len({c.event_id for c in merged.connections})
    return merged


def rewrite_corpus(events: List[Event], losers: List[Entity], keeper_name: str) -> List[Event]:
    """Rewritten copies of the events that named any loser."""
    rewritten = []
    for event in events:
        current = event
        for loser in losers:
            if loser.name != keeper_name and references_name(current, loser.name):
                current = rewrite_event(current, loser.name, keeper_name)
        if current != event:
            rewritten.append(current)
    return rewritten


class MergeEngine:
    """
    Executes entity merges.

    Batch reconciliation and operator merges share one primitive. Every
    merge runs under the entity store's write lock, from re-reading the
    keeper and losers to the commit, because rewriting events and
    recomputing connections touch entities of every type.
    """

    def __init__(
        self,
        entity_store: "EntityStore",
        events: "EventRepository",
        recalculator: Optional[ConnectionRecalculator] = None,
        analysis_cache: Optional["AnalysisCache"] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.entity_store = entity_store
        self.events = events
        self.audit_logger = audit_logger or AuditLogger()
        self.recalculator = recalculator or ConnectionRecalculator(
            entity_store, events, audit_logger=self.audit_logger
        )
        self.analysis_cache = analysis_cache

        self.stats = {
            "merges_committed": 0,
            "merges_failed": 0,
            "entities_removed": 0,
            "events_rewritten": 0,
        }

    def find_duplicate_groups(self, entity_type: EntityType) -> List[DuplicateGroup]:
        """Groups of entities of one type sharing a non-null external id."""
        return self.entity_store.group_by_external_id(entity_type)

    def preview_reconciliation(self) -> ReconciliationPreview:
        """Show what ``reconcile`` would merge without changing anything."""
        preview = ReconciliationPreview()
        for entity_type in TYPE_ORDER:
            for group in self.find_duplicate_groups(entity_type):
                preview.groups.append(
                    PreviewGroup(
                        external_id=group.external_id,
                        entity_type=entity_type,
                        keeper_id=group.keeper.id,
                        keeper_name=group.keeper.name,
                        loser_ids=[loser.id for loser in group.losers],
                        loser_names=[loser.name for loser in group.losers],
                    )
                )
        return preview

    async def reconcile(self) -> ReconciliationResult:
        """Merge every group of same-type entities sharing an external id.

        The oldest entity of each group is kept. Running this again with no
        new data merges nothing.

        Returns:
            ReconciliationResult listing each committed merge

        Raises:
            MergeTransactionError: If any merge fails to commit. Merges
                committed before the failure stay committed.
        """
        result = ReconciliationResult()

        for entity_type in TYPE_ORDER:
            groups = self.find_duplicate_groups(entity_type)
            result.groups_found += len(groups)

            for group in groups:
                logger.info(
                    f"🔄 Reconciling {len(group.entities)} {entity_type.value} entities "
                    f"sharing external id {group.external_id}"
                )
                merge_result = await self.merge(
                    group.keeper.id,
                    [loser.id for loser in group.losers],
                    trigger="reconciliation",
                    external_id=group.external_id,
                )
                result.merges.append(merge_result)

        result.end_time = datetime.now(timezone.utc)
        self.audit_logger.log_reconciliation(
            groups_found=result.groups_found,
            entities_removed=result.entities_removed,
        )
        logger.info(
            f"✅ Reconciliation complete: {result.merge_count} merges, "
            f"{result.entities_removed} entities removed"
        )
        return result

    async def merge_entities(self, keeper_id: str, loser_id: str) -> MergeResult:
        """Operator-driven merge of a single pair."""
        return await self.merge(keeper_id, [loser_id], trigger="operator")

    async def merge(
        self,
        keeper_id: str,
        loser_ids: List[str],
        trigger: str = "operator",
        external_id: Optional[str] = None,
    ) -> MergeResult:
        """Fold ``loser_ids`` into ``keeper_id``.

        Args:
            keeper_id: Entity that survives
            loser_ids: Entities that are removed
            trigger: What requested the merge, recorded in the audit trail
            external_id: Shared external id for reconciliation merges

        Returns:
            MergeResult describing the committed merge

        Raises:
            MergeValidationError: Self-merge, no losers, or mixed types
            EntityNotFoundError: Keeper or a loser is not persisted
            MergeTransactionError: Staging or commit failed; nothing was written
        """
        loser_ids = list(dict.fromkeys(loser_ids))
        if not loser_ids:
            raise MergeValidationError("A merge needs at least one loser")
        if keeper_id in loser_ids:
            raise MergeValidationError(
                f"Cannot merge entity {keeper_id} with itself",
                context={"keeper_id": keeper_id},
            )

        keeper = await self._require(keeper_id)
        entity_type = EntityType(keeper.type)

        async with self.entity_store.write_lock:
            with log_context(merge_keeper=keeper_id):
                # Reload under the lock so we merge what is actually persisted
                keeper = await self._require(keeper_id)
                losers = [await self._require(loser_id) for loser_id in loser_ids]

                mismatched = [
                    loser.id for loser in losers if EntityType(loser.type) != entity_type
                ]
                if mismatched:
                    raise MergeValidationError(
                        f"Cannot merge {', '.join(mismatched)} into {entity_type.value} "
                        f"entity {keeper_id}: types differ",
                        context={"keeper_id": keeper_id, "loser_ids": mismatched},
                    )

                return await self._execute(keeper, losers, trigger, external_id)

    async def _require(self, entity_id: str) -> Entity:
        entity = await self.entity_store.fetch_persisted(entity_id)
        if entity is None:
            logger.error(f"❌ Merge aborted, entity not found: {entity_id}")
            raise EntityNotFoundError(entity_id)
        return entity

    async def _execute(
        self,
        keeper: Entity,
        losers: List[Entity],
        trigger: str,
        external_id: Optional[str],
    ) -> MergeResult:
        loser_ids = [loser.id for loser in losers]
        logger.info(
            f"🔄 Merging {', '.join(loser.name for loser in losers)} into {keeper.name}",
            extra={"keeper_id": keeper.id, "loser_ids": loser_ids, "trigger": trigger},
        )

        step = "union_aliases"
        try:
            merged_keeper = build_merged_keeper(keeper, losers)

            step = "rewrite_events"
            corpus = await self.events.list_all()
            rewritten = rewrite_corpus(corpus, losers, keeper.name)
            batch = self.entity_store.document_store.batch()
            for event in rewritten:
                self.events.stage_update(batch, event)

            step = "update_keeper"
            self.entity_store.stage_update(batch, merged_keeper)

            step = "delete_losers"
            for loser in losers:
                self.entity_store.stage_delete(batch, loser)

            step = "recalculate_connections"
            rewritten_by_id = {event.id: event for event in rewritten}
            final_corpus = [rewritten_by_id.get(event.id, event) for event in corpus]
            pool = self._pool_after_merge(merged_keeper, set(loser_ids))
            recalculated = self.recalculator.stage(pool, final_corpus, batch)

            step = "commit"
            await batch.commit()

        except Exception as e:
            self.stats["merges_failed"] += 1
            self.audit_logger.log_merge_failure(keeper.id, loser_ids, step, str(e))
            logger.error(f"❌ Merge into {keeper.id} failed at {step}: {e}")
            raise MergeTransactionError(
                f"Merge into {keeper.id} failed at step '{step}': {e}",
                step=step,
                keeper_id=keeper.id,
                loser_ids=loser_ids,
            ) from e

        # Committed: bring local state in line
        for loser in losers:
            self.entity_store.remove(loser.id)
        self.entity_store.update(merged_keeper)
        self.entity_store.replace_all(recalculated)
        final_keeper = self.entity_store.get(keeper.id) or merged_keeper

        await self._invalidate_analysis(keeper, losers, rewritten)

        self.stats["merges_committed"] += 1
        self.stats["entities_removed"] += len(losers)
        self.stats["events_rewritten"] += len(rewritten)

        result = MergeResult(
            keeper_id=keeper.id,
            keeper_name=keeper.name,
            entity_type=EntityType(keeper.type),
            loser_ids=loser_ids,
            loser_names=[loser.name for loser in losers],
            aliases=final_keeper.aliases,
            rewritten_event_ids=[event.id for event in rewritten],
            connection_count=final_keeper.connection_count,
            trigger=trigger,
            external_id=external_id,
        )
        self.audit_logger.log_merge(
            keeper_id=result.keeper_id,
            keeper_name=result.keeper_name,
            loser_ids=result.loser_ids,
            loser_names=result.loser_names,
            rewritten_event_ids=result.rewritten_event_ids,
            trigger=trigger,
            external_id=external_id,
        )
        logger.info(
            f"✅ Merged {len(losers)} entities into {keeper.name}, "
            f"rewrote {len(rewritten)} events"
        )
        return result

    def _pool_after_merge(self, merged_keeper: Entity, loser_ids: Set[str]) -> List[Entity]:
        pool = []
        keeper_seen = False
        for entity in self.entity_store.all():
            if entity.id in loser_ids:
                continue
            if entity.id == merged_keeper.id:
                pool.append(merged_keeper)
                keeper_seen = True
            else:
                pool.append(entity)
        if not keeper_seen:
            pool.append(merged_keeper)
        return pool

    async def _invalidate_analysis(
        self, keeper: Entity, losers: List[Entity], rewritten: List[Event]
    ) -> None:
        if self.analysis_cache is None:
            return

        names: Set[str] = {keeper.name, *keeper.aliases}
        for loser in losers:
            names.add(loser.name)
            names.update(loser.aliases)
        known = build_name_index(self.entity_store.all())
        for event in rewritten:
            names.update(name for _, name in event_mentions(event, known))

        for name in names:
            await self.analysis_cache.invalidate(name)

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self.stats)
