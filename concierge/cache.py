"""In-memory TTL cache for embeddings, search results and orchestrator outputs.

Provides:
- CachePrefix: namespaces for each data class, with TTLs from settings (ttl_for).
- ResultCache: bounded key/value store with absolute expiry per entry.
    - get/set/delete keyed by (prefix, input); the input is serialized deterministically
      and hashed into a stable key.
    - Expired entries are evicted lazily on read and in bulk by sweep().
    - When full, the oldest-inserted entry is evicted (insertion order, not access order).
- cache: process-wide singleton. State is lost on restart; correctness never depends on it.

Cached values are shared objects: callers must not mutate what get() returns.
"""
import hashlib
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel

from concierge.analytics import analytics
from concierge.config import settings

logger = logging.getLogger(__name__)


class CachePrefix(str, Enum):
    EMBEDDING = "emb"
    RAG_SEARCH = "rag"
    ORCHESTRATOR = "orch"
    VISUAL_ASSETS = "visual"
    METRICS = "metrics"
    TAXONOMY = "taxonomy"


def ttl_for(prefix: CachePrefix) -> int:
    """Return the configured TTL in seconds for a cache prefix."""
    return {
        CachePrefix.EMBEDDING: settings.CACHE_TTL_EMBEDDING_SECONDS,
        CachePrefix.RAG_SEARCH: settings.CACHE_TTL_SEARCH_SECONDS,
        CachePrefix.ORCHESTRATOR: settings.CACHE_TTL_ORCHESTRATOR_SECONDS,
        CachePrefix.VISUAL_ASSETS: settings.CACHE_TTL_VISUAL_ASSETS_SECONDS,
        CachePrefix.METRICS: settings.CACHE_TTL_METRICS_SECONDS,
        CachePrefix.TAXONOMY: settings.CACHE_TTL_TAXONOMY_SECONDS,
    }[prefix]


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


def _prefix_name(prefix: Union[CachePrefix, str]) -> str:
    return prefix.value if isinstance(prefix, CachePrefix) else str(prefix)


class ResultCache:
    """Bounded in-memory TTL cache.

    Args:
        max_size: Maximum number of live entries before insertion-order eviction.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_size = max(1, int(max_size))
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits: Counter = Counter()
        self._misses: Counter = Counter()

    @staticmethod
    def make_key(prefix: Union[CachePrefix, str], key: Any) -> str:
        """Compute a stable namespaced key for any JSON-serializable input.

        Strings are used as-is; everything else is serialized with sorted keys so
        equal inputs always map to the same entry.
        """
        if isinstance(key, str):
            serialized = key
        else:
            serialized = json.dumps(key, sort_keys=True, separators=(",", ":"), default=_json_default)
        digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
        return f"{_prefix_name(prefix)}:{digest}"

    def get(self, prefix: Union[CachePrefix, str], key: Any) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        name = _prefix_name(prefix)
        cache_key = self.make_key(prefix, key)
        entry = self._entries.get(cache_key)
        if entry is None:
            self._misses[name] += 1
            analytics.track_cache_lookup(name, hit=False)
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[cache_key]
            self._misses[name] += 1
            analytics.track_cache_lookup(name, hit=False)
            return None
        self._hits[name] += 1
        analytics.track_cache_lookup(name, hit=True)
        logger.debug("Cache hit prefix=%s key=%s", name, cache_key[:24])
        return entry.value

    def set(self, prefix: Union[CachePrefix, str], key: Any, value: Any, ttl_seconds: float) -> None:
        """Store a value under (prefix, key) for ttl_seconds."""
        cache_key = self.make_key(prefix, key)
        # Re-setting a key moves it to the newest insertion position
        self._entries.pop(cache_key, None)
        while len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[cache_key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        logger.debug("Cache set prefix=%s key=%s ttl=%s", _prefix_name(prefix), cache_key[:24], ttl_seconds)

    def delete(self, prefix: Union[CachePrefix, str], key: Any) -> None:
        self._entries.pop(self.make_key(prefix, key), None)

    def clear_prefix(self, prefix: Union[CachePrefix, str]) -> int:
        """Remove all entries under a prefix; returns the number removed."""
        marker = f"{_prefix_name(prefix)}:"
        doomed = [k for k in self._entries if k.startswith(marker)]
        for k in doomed:
            del self._entries[k]
        logger.debug("Cache prefix cleared prefix=%s removed=%d", _prefix_name(prefix), len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._hits.clear()
        self._misses.clear()

    def sweep(self) -> int:
        """Remove expired entries; returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Cache sweep removed=%d", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Size, capacity and hit/miss counters (overall and per prefix)."""
        hits = sum(self._hits.values())
        misses = sum(self._misses.values())
        lookups = hits + misses
        prefixes = sorted(set(self._hits) | set(self._misses))
        return {
            "size": len(self._entries),
            "maxSize": self.max_size,
            "hits": hits,
            "misses": misses,
            "hitRate": round(hits / lookups * 100, 1) if lookups else 0.0,
            "byPrefix": {p: {"hits": self._hits[p], "misses": self._misses[p]} for p in prefixes},
        }


cache = ResultCache(max_size=settings.CACHE_MAX_ENTRIES)
