"""External knowledge lookups used to enrich newly created entities."""

from .base import (
    EnrichmentCandidate,
    EnrichmentDetails,
    EnrichmentProvider,
    NullEnrichmentProvider,
)
from .wikidata import WikidataClient

__all__ = [
    "EnrichmentCandidate",
    "EnrichmentDetails",
    "EnrichmentProvider",
    "NullEnrichmentProvider",
    "WikidataClient",
]
