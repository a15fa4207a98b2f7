"""kbcore: entity resolution and consistency maintenance for an event knowledge graph."""

__version__ = "0.1.0"

from .config import Config, ConfigManager
from .knowledge_base import KnowledgeBase
from .models import Entity, EntityType, Event, EventEnvelope

__all__ = [
    "Config",
    "ConfigManager",
    "Entity",
    "EntityType",
    "Event",
    "EventEnvelope",
    "KnowledgeBase",
]
