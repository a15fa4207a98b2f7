"""Exact and alias matching of raw names against known entities."""

from typing import Iterable, Optional, Sequence

from ..logging_config import get_logger
from ..models import Entity, EntityType
from .normalizer import generate_search_variations

logger = get_logger(__name__)


class EntityMatcher:
    """Finds the entity a raw name refers to.

    Matching is exact and case-insensitive against an entity's name and
    aliases. Variations from the normalizer are tried in order, so the name
    as written beats any derived spelling, and within one variation the
    first entity in pool order wins.
    """

    def find_match(
        self,
        name: str,
        pool: Iterable[Entity],
        entity_type: Optional[EntityType] = None,
    ) -> Optional[Entity]:
        """Return the matching entity, or None when nothing matches.

        Args:
            name: Raw name to resolve
            pool: Candidate entities, in priority order
            entity_type: Only consider entities of this type

        Returns:
            The matched entity or None
        """
        candidates: Sequence[Entity] = [
            entity for entity in pool
            if entity_type is None or entity.type == entity_type
        ]
        if not candidates:
            return None

        for variation in generate_search_variations(name):
            match = self._first_exact(variation, candidates)
            if match is not None:
                if variation != name:
                    logger.debug(
                        f"Matched '{name}' via variation '{variation}' to '{match.name}'",
                        extra={"entity_id": match.id},
                    )
                return match

        return None

    def _first_exact(self, variation: str, candidates: Sequence[Entity]) -> Optional[Entity]:
        needle = variation.lower()
        for entity in candidates:
            if entity.name.lower() == needle:
                return entity
            if any(alias.lower() == needle for alias in entity.aliases):
                return entity
        return None
