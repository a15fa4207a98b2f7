"""Repository for the event corpus."""

from typing import Any, List, Optional

from ..errors import ErrorContext, PersistenceError, retry_on_error
from ..logging_config import get_logger
from ..models import EVENTS_COLLECTION, Event
from .document_store import DocumentStore, WriteBatch

logger = get_logger(__name__)


class EventRepository:
    """Typed access to the ``events`` collection."""

    collection = EVENTS_COLLECTION

    def __init__(self, store: DocumentStore):
        self.store = store

    @retry_on_error(max_attempts=3, delay=0.1)
    async def list_all(self) -> List[Event]:
        """Load the full corpus."""
        with ErrorContext("events.list_all", convert_to=PersistenceError):
            documents = await self.store.list_collection(self.collection)
            return [Event.from_document(doc) for doc in documents]

    @retry_on_error(max_attempts=3, delay=0.1)
    async def get(self, event_id: str) -> Optional[Event]:
        with ErrorContext("events.get", convert_to=PersistenceError, event_id=event_id):
            document = await self.store.get_by_id(self.collection, event_id)
            return Event.from_document(document) if document else None

    @retry_on_error(max_attempts=3, delay=0.1)
    async def find_by_field(self, field: str, value: Any) -> List[Event]:
        with ErrorContext("events.find_by_field", convert_to=PersistenceError, field=field):
            documents = await self.store.query_by_field(self.collection, field, value)
            return [Event.from_document(doc) for doc in documents]

    @retry_on_error(max_attempts=3, delay=0.1)
    async def find_by_prefix(self, field: str, prefix: str) -> List[Event]:
        with ErrorContext("events.find_by_prefix", convert_to=PersistenceError, field=field):
            documents = await self.store.query_by_field_range(self.collection, field, prefix)
            return [Event.from_document(doc) for doc in documents]

    def stage_create(self, batch: WriteBatch, event: Event) -> None:
        batch.create(self.collection, event.id, event.to_document())

    def stage_update(self, batch: WriteBatch, event: Event) -> None:
        batch.update(self.collection, event.id, event.to_document())

    async def save(self, event: Event) -> Event:
        """Persist a single new event in its own batch."""
        batch = self.store.batch()
        self.stage_create(batch, event)
        await batch.commit()
        logger.debug(f"Saved event {event.id}")
        return event
