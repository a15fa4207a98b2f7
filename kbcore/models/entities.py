"""Core graph models: entities, events and their connections."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they stay comparable."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntityType(str, Enum):
    """Kinds of canonical entity in the graph."""

    PERSON = "person"
    ORGANIZATION = "organization"
    PLACE = "place"
    UNKNOWN = "unknown"

    @property
    def collection(self) -> str:
        """Document store collection holding entities of this type."""
        return ENTITY_COLLECTIONS[self]


ENTITY_COLLECTIONS = {
    EntityType.PERSON: "people",
    EntityType.ORGANIZATION: "organizations",
    EntityType.PLACE: "places",
    EntityType.UNKNOWN: "unknown",
}

# Resolution order when a bare name could belong to several types
TYPE_ORDER = [
    EntityType.PERSON,
    EntityType.ORGANIZATION,
    EntityType.PLACE,
    EntityType.UNKNOWN,
]

EVENTS_COLLECTION = "events"


class ConnectionRole(str, Enum):
    """Role an entity played in an event."""

    ACTOR = "actor"
    TARGET = "target"
    LOCATION = "location"


class Connection(BaseModel):
    """Links one entity to one event."""

    event_id: str
    role: ConnectionRole
    action: str = ""
    timestamp: Optional[datetime] = None
    related_entity_names: List[str] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, v):
        return _as_aware(v)


class Entity(BaseModel):
    """A canonical person, organization, place or unclassified record."""

    id: str = Field(default_factory=lambda: f"entity_{uuid4().hex[:12]}")
    name: str
    type: EntityType = EntityType.UNKNOWN
    aliases: List[str] = Field(default_factory=list)
    external_id: Optional[str] = None
    connections: List[Connection] = Field(default_factory=list)
    connection_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    description: Optional[str] = None
    category: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    last_deduplication: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure name is not empty."""
        if not v or not v.strip():
            raise ValueError("Entity name cannot be empty")
        return v.strip()

    @field_validator("aliases")
    @classmethod
    def dedupe_aliases(cls, v: List[str]) -> List[str]:
        seen = set()
        aliases = []
        for alias in v:
            alias = alias.strip()
            if alias and alias not in seen:
                seen.add(alias)
                aliases.append(alias)
        return aliases

    @field_validator("external_id")
    @classmethod
    def blank_external_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("created_at", "last_deduplication")
    @classmethod
    def ensure_timezone(cls, v):
        return _as_aware(v)

    @property
    def collection(self) -> str:
        return EntityType(self.type).collection

    def names(self) -> List[str]:
        """Name followed by every alias that differs from it."""
        return [self.name] + [alias for alias in self.aliases if alias != self.name]

    def matches_name(self, name: str) -> bool:
        """Case-insensitive exact comparison against name and aliases."""
        needle = name.strip().lower()
        if not needle:
            return False
        return any(candidate.lower() == needle for candidate in self.names())

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the document store.

        ``search_names`` holds the lowercased name and aliases so the store
        can be queried case-insensitively. It is ignored when loading.
        """
        document = self.model_dump(mode="json")
        document["search_names"] = [name.lower() for name in self.names()]
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Entity":
        return cls.model_validate(document)


class Event(BaseModel):
    """One ingested occurrence.

    Only merge rewrites change an event after ingestion, and they produce a
    new instance rather than editing this one.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"event_{uuid4().hex}")
    actor: str
    action: str
    target: Optional[str] = None
    locations: List[str] = Field(default_factory=list)
    sentence: str = ""
    date_received: datetime
    processed_datetime: Optional[datetime] = None

    @field_validator("actor", "action")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("target")
    @classmethod
    def optional_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("locations", mode="before")
    @classmethod
    def flatten_locations(cls, v):
        """Accept a bare string or {name, category} records as well as names."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        names = []
        for item in v:
            if isinstance(item, dict):
                item = item.get("name") or ""
            if isinstance(item, str) and item.strip():
                names.append(item.strip())
        return names

    @field_validator("date_received", "processed_datetime")
    @classmethod
    def ensure_timezone(cls, v):
        return _as_aware(v)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Event":
        return cls.model_validate(document)


class DuplicateGroup(BaseModel):
    """Entities of one type sharing an external id, oldest first. Never persisted."""

    external_id: str
    entity_type: EntityType
    entities: List[Entity]

    @property
    def keeper(self) -> Entity:
        return self.entities[0]

    @property
    def losers(self) -> List[Entity]:
        return self.entities[1:]


class EventEnvelope(BaseModel):
    """A validated record handed over by the ingestion collaborator.

    Name lists are already tokenized; ``actor`` and ``target`` keep the raw
    text when the collaborator supplies it.
    """

    actor_names: List[str]
    action: str
    target_names: List[str] = Field(default_factory=list)
    location_names: List[Any] = Field(default_factory=list)
    sentence: str = ""
    date_received: datetime
    actor: Optional[str] = None
    target: Optional[str] = None
    event_id: Optional[str] = None

    @field_validator("actor_names", "target_names", mode="before")
    @classmethod
    def clean_names(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [name.strip() for name in v if isinstance(name, str) and name.strip()]

    @field_validator("actor_names")
    @classmethod
    def require_actor(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one actor name is required")
        return v

    @field_validator("action")
    @classmethod
    def require_action(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("action must not be empty")
        return v.strip()

    @field_validator("date_received", mode="before")
    @classmethod
    def parse_date(cls, v):
        """Parse date from string if needed."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @field_validator("date_received")
    @classmethod
    def ensure_timezone(cls, v):
        return _as_aware(v)
