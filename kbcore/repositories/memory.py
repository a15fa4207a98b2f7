"""In-process document store."""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from ..errors import PersistenceError
from ..logging_config import get_logger
from .document_store import CREATE, DELETE, UPDATE, DocumentStore, WriteOp

logger = get_logger(__name__)

Collections = Dict[str, Dict[str, Dict[str, Any]]]


class InMemoryDocumentStore(DocumentStore):
    """Document store held in memory.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state. Commits are all-or-nothing: ops are applied to a
    staged copy which replaces the live data only when every op succeeded.
    Commits run one at a time, so a slow ``_persist`` can never let one
    batch swap out data another batch has already committed.
    """

    def __init__(self, initial: Optional[Collections] = None):
        self._collections: Collections = copy.deepcopy(initial) if initial else {}
        self._commit_lock = asyncio.Lock()
        self._failures_remaining = 0
        self._failure_error: Optional[Exception] = None
        self.commit_count = 0
        self.committed_batches: List[List[WriteOp]] = []

    def inject_failure(self, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``times`` commits fail without applying anything."""
        self._failures_remaining = times
        self._failure_error = error

    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        results = []
        for document in self._collections.get(collection, {}).values():
            stored = document.get(field)
            if isinstance(stored, list):
                if value in stored:
                    results.append(copy.deepcopy(document))
            elif stored == value:
                results.append(copy.deepcopy(document))
        return results

    async def query_by_field_range(
        self, collection: str, field: str, prefix: str
    ) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(document)
            for document in self._collections.get(collection, {}).values()
            if isinstance(document.get(field), str) and document[field].startswith(prefix)
        ]

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def list_collection(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    async def apply_batch(self, ops: List[WriteOp]) -> None:
        async with self._commit_lock:
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                error = self._failure_error or PersistenceError(
                    "Injected commit failure", collection=ops[0].collection if ops else None
                )
                logger.warning(f"Commit of {len(ops)} ops failed", extra={"error": str(error)})
                raise error

            staged = self._stage(ops)
            await self._persist(staged)
            self._collections = staged
            self.commit_count += 1
            self.committed_batches.append(list(ops))
            logger.debug(f"Committed batch of {len(ops)} ops")

    def _stage(self, ops: List[WriteOp]) -> Collections:
        """Apply ops to a copy of the data, raising before anything goes live."""
        staged = copy.deepcopy(self._collections)

        for op in ops:
            documents = staged.setdefault(op.collection, {})

            if op.kind == CREATE:
                if op.doc_id in documents:
                    raise PersistenceError(
                        f"Document already exists: {op.collection}/{op.doc_id}",
                        collection=op.collection,
                        retryable=False,
                    )
                documents[op.doc_id] = {**copy.deepcopy(op.data or {}), "id": op.doc_id}

            elif op.kind == UPDATE:
                if op.doc_id not in documents:
                    raise PersistenceError(
                        f"Cannot update missing document: {op.collection}/{op.doc_id}",
                        collection=op.collection,
                        retryable=False,
                    )
                documents[op.doc_id].update(copy.deepcopy(op.data or {}))
                documents[op.doc_id]["id"] = op.doc_id

            elif op.kind == DELETE:
                documents.pop(op.doc_id, None)

            else:
                raise PersistenceError(f"Unknown write op: {op.kind}", retryable=False)

        return staged

    async def _persist(self, staged: Collections) -> None:
        """Hook for subclasses that mirror the data somewhere durable."""
        return None
