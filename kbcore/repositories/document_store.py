"""Document store interface used for all persistence."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import PersistenceError

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class WriteOp:
    """A single staged write."""

    kind: str
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "collection": self.collection,
            "doc_id": self.doc_id,
        }


@dataclass
class WriteBatch:
    """Writes staged together and committed atomically.

    Nothing is visible in the store until ``commit`` returns, and a failed
    commit leaves the store exactly as it was.
    """

    store: "DocumentStore"
    ops: List[WriteOp] = field(default_factory=list)
    committed: bool = False

    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp(CREATE, collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp(UPDATE, collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.ops.append(WriteOp(DELETE, collection, doc_id))
        return self

    def __len__(self) -> int:
        return len(self.ops)

    async def commit(self) -> None:
        """Apply every staged op or none of them.

        Raises:
            PersistenceError: If the batch was already committed or the store
                rejected it
        """
        if self.committed:
            raise PersistenceError("Batch already committed", retryable=False)
        await self.store.apply_batch(list(self.ops))
        self.committed = True


class DocumentStore(ABC):
    """Abstract async document store.

    Documents are plain dicts keyed by ``id`` inside named collections.
    """

    def batch(self) -> WriteBatch:
        """Start a new write batch."""
        return WriteBatch(store=self)

    @abstractmethod
    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Documents whose ``field`` equals ``value``.

        For list-valued fields a document matches when ``value`` is a member.
        """
        pass

    @abstractmethod
    async def query_by_field_range(
        self, collection: str, field: str, prefix: str
    ) -> List[Dict[str, Any]]:
        """Documents whose string ``field`` starts with ``prefix``."""
        pass

    @abstractmethod
    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by id, or None if it does not exist."""
        pass

    @abstractmethod
    async def list_collection(self, collection: str) -> List[Dict[str, Any]]:
        """All documents of a collection in insertion order."""
        pass

    @abstractmethod
    async def apply_batch(self, ops: List[WriteOp]) -> None:
        """Apply ops atomically. Called by ``WriteBatch.commit``."""
        pass
