"""Enrichment interface: descriptive attributes from an external knowledge source."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import EnrichmentError
from ..logging_config import get_logger
from ..resolution.normalizer import clean_entity_name

logger = get_logger(__name__)


@dataclass
class EnrichmentCandidate:
    """A search hit from the knowledge source."""

    id: str
    label: str = ""
    description: str = ""


@dataclass
class EnrichmentDetails:
    """Descriptive attributes of one external entity."""

    external_id: str
    label: str = ""
    description: str = ""
    aliases: List[str] = field(default_factory=list)
    instance_of: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "external_id": self.external_id,
            "label": self.label,
            "description": self.description,
            "aliases": self.aliases,
            "instance_of": self.instance_of,
            "attributes": self.attributes,
        }

    def type_hints(self) -> str:
        """Lowercased instance-of labels joined for keyword checks."""
        return " ".join(self.instance_of).lower()


class EnrichmentProvider(ABC):
    """Async lookup against an external knowledge source.

    Failures are never fatal to the caller: ``enrich`` logs and returns None.
    """

    @abstractmethod
    async def search(self, name: str) -> List[EnrichmentCandidate]:
        """Search candidates for a name.

        Raises:
            EnrichmentError: If the source could not be queried
        """
        pass

    @abstractmethod
    async def fetch_details(self, candidate_id: str) -> Optional[EnrichmentDetails]:
        """Fetch attributes for one candidate.

        Raises:
            EnrichmentError: If the source could not be queried
        """
        pass

    async def enrich(self, name: str) -> Optional[EnrichmentDetails]:
        """Search for a name and return details of the first candidate."""
        query = clean_entity_name(name)
        if not query:
            return None

        try:
            candidates = await self.search(query)
            if not candidates:
                return None
            return await self.fetch_details(candidates[0].id)
        except EnrichmentError as e:
            logger.warning(
                f"Enrichment failed for '{name}': {e}",
                extra={"query": query, "error_code": e.error_code},
            )
            return None

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class NullEnrichmentProvider(EnrichmentProvider):
    """Provider used when enrichment is disabled."""

    async def search(self, name: str) -> List[EnrichmentCandidate]:
        return []

    async def fetch_details(self, candidate_id: str) -> Optional[EnrichmentDetails]:
        return None
