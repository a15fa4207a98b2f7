"""Wires stores, resolution, analysis and ingestion into one object."""

from typing import Any, Dict, Iterable, Optional, Union

from .analysis import AnalysisCache, CrossReferenceAnalyzer
from .audit import AuditLogger
from .config import Config, ConfigManager
from .enrichment import EnrichmentProvider, NullEnrichmentProvider, WikidataClient
from .ingestion import EventIngestor
from .logging_config import get_logger
from .models import EventEnvelope
from .repositories import (
    DocumentStore,
    EntityStore,
    EventRepository,
    InMemoryDocumentStore,
    JSONFileDocumentStore,
)
from .resolution import ConnectionRecalculator, MergeEngine

logger = get_logger(__name__)


def create_document_store(config: Config) -> DocumentStore:
    if config.storage.backend == "memory":
        return InMemoryDocumentStore()
    return JSONFileDocumentStore(config.storage.path)


def create_enrichment_provider(config: Config) -> EnrichmentProvider:
    if not config.enrichment.enabled:
        return NullEnrichmentProvider()
    return WikidataClient(
        base_url=config.enrichment.base_url,
        language=config.enrichment.language,
        timeout=config.enrichment.timeout,
        user_agent=config.enrichment.user_agent,
        cache_size=config.enrichment.cache_size,
    )


class KnowledgeBase:
    """Entry point for callers: batch jobs, the CLI and tests.

    Call ``open`` before use so the entity pool is loaded.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[str] = None,
        document_store: Optional[DocumentStore] = None,
        enrichment: Optional[EnrichmentProvider] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize the knowledge base.

        Args:
            config: Configuration object; loaded through ConfigManager when omitted
            config_path: JSON config file used when ``config`` is omitted
            document_store: Store to use instead of the configured one
            enrichment: Enrichment provider to use instead of the configured one
            audit_logger: Shared audit logger
        """
        self.config = config or ConfigManager(config_path).load()
        self.document_store = document_store or create_document_store(self.config)
        self.enrichment = enrichment or create_enrichment_provider(self.config)
        self.audit_logger = audit_logger or AuditLogger()

        self.entities = EntityStore(self.document_store)
        self.events = EventRepository(self.document_store)
        self.analysis_cache = AnalysisCache(
            max_size=self.config.analysis.cache_max_size,
            ttl=self.config.analysis.cache_ttl,
        )
        self.analyzer = CrossReferenceAnalyzer(
            self.events,
            entity_store=self.entities,
            cache=self.analysis_cache,
            default_top_k=self.config.analysis.default_top_k,
        )
        self.recalculator = ConnectionRecalculator(
            self.entities, self.events, audit_logger=self.audit_logger
        )
        self.merge_engine = MergeEngine(
            self.entities,
            self.events,
            recalculator=self.recalculator,
            analysis_cache=self.analysis_cache,
            audit_logger=self.audit_logger,
        )
        self.ingestor = EventIngestor(
            self.entities,
            self.events,
            enrichment=self.enrichment,
            analysis_cache=self.analysis_cache,
            audit_logger=self.audit_logger,
        )

    async def open(self) -> "KnowledgeBase":
        await self.entities.load_all()
        return self

    async def close(self) -> None:
        await self.enrichment.close()

    async def __aenter__(self) -> "KnowledgeBase":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def ingest(self, envelopes: Iterable[Union[EventEnvelope, Dict[str, Any]]]):
        return await self.ingestor.ingest_batch(envelopes)

    async def reconcile(self):
        return await self.merge_engine.reconcile()

    def preview_reconciliation(self):
        return self.merge_engine.preview_reconciliation()

    async def merge(self, keeper_id: str, loser_id: str):
        return await self.merge_engine.merge_entities(keeper_id, loser_id)

    async def recalculate(self):
        return await self.recalculator.recalculate_all()

    async def related(self, entity_name: str, top_k: Optional[int] = None):
        return await self.analyzer.related_entities(entity_name, top_k)

    async def stats(self, entity_id: str):
        return await self.analyzer.connection_stats(entity_id)
