"""Wikidata implementation of the enrichment interface."""

import re
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import httpx

from ..errors import EnrichmentError
from ..logging_config import get_logger
from .base import EnrichmentCandidate, EnrichmentDetails, EnrichmentProvider

logger = get_logger(__name__)

DEFAULT_API_URL = "https://www.wikidata.org/w/api.php"

# Claims that point at other Wikidata items and need a label lookup
ITEM_PROPERTIES = {
    "P31": "instance_of",
    "P106": "occupation",
    "P17": "country",
}

# Claims whose value is used as-is
VALUE_PROPERTIES = {
    "P1082": "population",
    "P569": "date_of_birth",
    "P571": "founded",
}

QID_PATTERN = re.compile(r"^Q\d+$")


def extract_claim_value(claim: Dict[str, Any]) -> Optional[str]:
    """Plain value of a claim's main snak: string, time, text or item id."""
    datavalue = claim.get("mainsnak", {}).get("datavalue")
    if not datavalue:
        return None

    value = datavalue.get("value")
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("time", "text", "id", "amount"):
            if value.get(key):
                return str(value[key])
    return None


class WikidataClient(EnrichmentProvider):
    """Enrichment over the public Wikidata API.

    Uses ``wbsearchentities`` to find candidates and ``wbgetentities`` to
    load details. Results, including misses, are cached per name.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        language: str = "en",
        timeout: float = 10.0,
        user_agent: str = "kbcore/0.1 (entity enrichment)",
        cache_size: int = 1000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Wikidata API endpoint
            language: Language for labels and descriptions
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header sent with every request
            cache_size: Number of names whose results are remembered
            client: Pre-built httpx client, mainly for tests
        """
        self.base_url = base_url
        self.language = language
        self.cache_size = cache_size
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": user_agent}
        )
        self._cache: "OrderedDict[str, Optional[EnrichmentDetails]]" = OrderedDict()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get(self, params: Dict[str, Any], query: str) -> Dict[str, Any]:
        try:
            response = await self.client.get(self.base_url, params={**params, "format": "json"})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise EnrichmentError(f"Wikidata request failed: {e}", query=query) from e
        except ValueError as e:
            raise EnrichmentError(f"Invalid Wikidata response: {e}", query=query) from e

    async def search(self, name: str) -> List[EnrichmentCandidate]:
        data = await self._get(
            {
                "action": "wbsearchentities",
                "search": name,
                "language": self.language,
                "limit": 5,
            },
            query=name,
        )
        return [
            EnrichmentCandidate(
                id=hit["id"],
                label=hit.get("label", ""),
                description=hit.get("description", ""),
            )
            for hit in data.get("search", [])
            if hit.get("id")
        ]

    async def fetch_details(self, candidate_id: str) -> Optional[EnrichmentDetails]:
        data = await self._get(
            {"action": "wbgetentities", "ids": candidate_id, "languages": self.language},
            query=candidate_id,
        )
        entity = data.get("entities", {}).get(candidate_id)
        if not entity or "missing" in entity:
            return None

        try:
            details = self._parse_entity(entity)
        except (KeyError, TypeError, AttributeError) as e:
            raise EnrichmentError(
                f"Could not parse Wikidata entity {candidate_id}: {e}", query=candidate_id
            ) from e

        await self._resolve_item_labels(details)
        return details

    async def enrich(self, name: str) -> Optional[EnrichmentDetails]:
        if name in self._cache:
            self._cache.move_to_end(name)
            return self._cache[name]

        details = await super().enrich(name)

        self._cache[name] = details
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return details

    def _parse_entity(self, entity: Dict[str, Any]) -> EnrichmentDetails:
        lang = self.language
        details = EnrichmentDetails(
            external_id=entity["id"],
            label=entity.get("labels", {}).get(lang, {}).get("value", ""),
            description=entity.get("descriptions", {}).get(lang, {}).get("value", ""),
            aliases=[alias["value"] for alias in entity.get("aliases", {}).get(lang, [])],
        )

        claims = entity.get("claims", {})

        for prop, attribute in ITEM_PROPERTIES.items():
            if claims.get(prop):
                value = extract_claim_value(claims[prop][0])
                if value:
                    details.attributes[attribute] = value

        for prop, attribute in VALUE_PROPERTIES.items():
            if claims.get(prop):
                value = extract_claim_value(claims[prop][0])
                if value is None:
                    continue
                if attribute == "population":
                    try:
                        details.attributes[attribute] = int(value.lstrip("+"))
                    except ValueError:
                        continue
                else:
                    details.attributes[attribute] = value

        if claims.get("P625"):
            datavalue = claims["P625"][0].get("mainsnak", {}).get("datavalue")
            if datavalue:
                details.attributes["coordinates"] = {
                    "lat": datavalue["value"]["latitude"],
                    "lng": datavalue["value"]["longitude"],
                }

        return details

    async def _resolve_item_labels(self, details: EnrichmentDetails) -> None:
        """Replace item ids (Q5, ...) in attributes with their labels."""
        ids = [
            details.attributes[attribute]
            for attribute in ITEM_PROPERTIES.values()
            if QID_PATTERN.match(str(details.attributes.get(attribute, "")))
        ]
        labels: Dict[str, str] = {}
        if ids:
            data = await self._get(
                {
                    "action": "wbgetentities",
                    "ids": "|".join(dict.fromkeys(ids)),
                    "props": "labels",
                    "languages": self.language,
                },
                query=details.external_id,
            )
            for qid, entity in data.get("entities", {}).items():
                label = entity.get("labels", {}).get(self.language, {}).get("value")
                if label:
                    labels[qid] = label

        for attribute in ITEM_PROPERTIES.values():
            value = details.attributes.get(attribute)
            if value in labels:
                details.attributes[attribute] = labels[value]

        if details.attributes.get("instance_of"):
            details.instance_of = [details.attributes["instance_of"]]
