"""Cache for cross-reference analysis results."""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Optional, Tuple

from ..logging_config import get_logger

logger = get_logger(__name__)

CacheKey = Tuple[str, str, int]


class AnalysisCache:
    """In-memory LRU cache with TTL, keyed by (kind, entity name, K).

    Entity names are compared case-insensitively so invalidating "Acme Corp"
    also drops results computed for "acme corp".
    """

    def __init__(self, max_size: int = 1000, ttl: Optional[int] = 3600):
        self.max_size = max_size
        self.ttl = ttl
        self.cache: "OrderedDict[CacheKey, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(kind: str, entity_name: str, top_k: int = 0) -> CacheKey:
        return (kind, entity_name.strip().lower(), top_k)

    async def get(self, key: CacheKey) -> Optional[Any]:
        """Get value from cache."""
        async with self._lock:
            if key not in self.cache:
                self.misses += 1
                return None

            value, expiry = self.cache[key]

            if expiry and time.time() > expiry:
                del self.cache[key]
                self.misses += 1
                return None

            self.cache.move_to_end(key)
            self.hits += 1
            return value

    async def set(self, key: CacheKey, value: Any) -> None:
        async with self._lock:
            expiry = time.time() + self.ttl if self.ttl else None
            self.cache[key] = (value, expiry)
            self.cache.move_to_end(key)

            if len(self.cache) > self.max_size:
                self.cache.popitem(last=False)

    async def invalidate(self, entity_name: str) -> int:
        """Drop every cached result for an entity name. Returns how many were dropped."""
        needle = entity_name.strip().lower()
        async with self._lock:
            stale = [key for key in self.cache if key[1] == needle]
            for key in stale:
                del self.cache[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} analysis results for '{entity_name}'")
        return len(stale)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            self.cache.clear()

    def __len__(self) -> int:
        return len(self.cache)
