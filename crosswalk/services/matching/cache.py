"""In-memory TTL cache of accepted resolutions.

Keyed by the competitor's normalized identity plus a fingerprint of the
catalog it was matched against, so a catalog change never serves a
stale match. Failed resolutions are never cached: a later catalog or
AI configuration may resolve them.
"""
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

import structlog

from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import MatchingStage, StandardizedMatchResult
from crosswalk.services.matching.normalizer import normalize

logger = structlog.get_logger(__name__)


def catalog_fingerprint(catalog: Sequence[CatalogProduct]) -> str:
    digest = hashlib.md5()
    for product in catalog:
        digest.update(product.model_dump_json().encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


def cache_key(competitor: CompetitorProduct, fingerprint: str) -> str:
    """md5 of the competitor's normalized identity and the catalog fingerprint."""
    specs = (
        competitor.specifications.model_dump(exclude_none=True)
        if competitor.specifications
        else {}
    )
    identity = {
        "sku": normalize(competitor.sku),
        "model": normalize(competitor.model),
        "company": normalize(competitor.company),
        "description": normalize(competitor.description),
        "specifications": specs,
        "catalog": fingerprint,
    }
    raw = json.dumps(identity, sort_keys=True, default=str)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    entries: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class MatchCache:
    """LRU-bounded TTL cache of StandardizedMatchResult by cache key."""

    def __init__(
        self,
        ttl_seconds: float = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, StandardizedMatchResult]]" = OrderedDict()
        self._stats = CacheStats()
        self._log = logger.bind(component="MatchCache")

    def get(self, key: str) -> Optional[StandardizedMatchResult]:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        expires_at, result = entry
        if expires_at <= self._clock():
            del self._entries[key]
            self._stats.misses += 1
            return None
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return result

    def put(self, key: str, result: StandardizedMatchResult) -> bool:
        """Store an accepted result; failed results are ignored."""
        if result.processing.stage == MatchingStage.FAILED:
            return False
        self._entries[key] = (self._clock() + self.ttl_seconds, result)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._stats.evictions += 1
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._log.info("cache_cleared")

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            entries=len(self._entries),
            evictions=self._stats.evictions,
        )
