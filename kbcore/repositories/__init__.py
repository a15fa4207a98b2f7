"""Persistence: the document store interface, its implementations and repositories."""

from .document_store import DocumentStore, WriteBatch, WriteOp
from .entity_store import EntityStore, MatchCache
from .events import EventRepository
from .json_store import JSONFileDocumentStore
from .memory import InMemoryDocumentStore

__all__ = [
    "DocumentStore",
    "WriteBatch",
    "WriteOp",
    "EntityStore",
    "MatchCache",
    "EventRepository",
    "JSONFileDocumentStore",
    "InMemoryDocumentStore",
]
