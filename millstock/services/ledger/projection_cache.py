"""
Projection Cache
Memoizes stock balance projections keyed by variety, date window and page.
Redis when configured, otherwise a bounded in-process LRU with TTL.
"""
import fnmatch
import pickle
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple
from urllib.parse import quote

import redis

from millstock.core.config import settings
from millstock.core.logging import get_logger
from .events import normalize_variety

logger = get_logger("projection")

# Variety segment used for projections spanning every variety
ALL_VARIETIES = "__all__"

_MISS = object()


class LocalMemoryBackend:
    """LRU dictionary with per-entry expiry"""

    def __init__(self, max_items: int = 10000):
        self.max_items = max_items
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISS
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return _MISS
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: int):
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_items:
                self._entries.popitem(last=False)

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


class RedisBackend:
    """Shared cache for multi-process deployments"""

    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis.from_url(url)

    def get(self, key: str) -> Any:
        raw = self.client.get(key)
        if raw is None:
            return _MISS
        return pickle.loads(raw)

    def set(self, key: str, value: Any, ttl: int):
        self.client.setex(key, ttl, pickle.dumps(value))

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self.client.scan_iter(match=pattern))
        if keys:
            self.client.delete(*keys)
        return len(keys)

    def clear(self):
        self.delete_pattern(f"{settings.CACHE_KEY_PREFIX}:*")


class ProjectionCache:
    """
    Cache in front of the balance engine.

    Keys have the shape ``<prefix>:<namespace>:<VARIETY>:<part>...`` so that
    a movement touching a variety invalidates exactly the projections of that
    variety plus the all-variety ones. Backend failures degrade to a cache
    miss; the projection is then computed from the store.
    """

    def __init__(
        self,
        backend=None,
        ttl: int = 30,
        enabled: bool = True,
        prefix: str = "millstock",
    ):
        self.backend = backend if backend is not None else LocalMemoryBackend()
        self.ttl = ttl
        self.enabled = enabled
        self.prefix = prefix
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(cls, config=settings) -> "ProjectionCache":
        if config.CACHE_BACKEND == "redis" and config.REDIS_URL:
            backend = RedisBackend(config.REDIS_URL)
        else:
            backend = LocalMemoryBackend(max_items=config.CACHE_MAX_ITEMS)
        return cls(
            backend=backend,
            ttl=config.CACHE_TTL_SECONDS,
            enabled=config.CACHE_ENABLED,
            prefix=config.CACHE_KEY_PREFIX,
        )

    @classmethod
    def disabled(cls) -> "ProjectionCache":
        return cls(enabled=False)

    @staticmethod
    def variety_segment(variety: Optional[str]) -> str:
        """Key segment for a variety, percent-encoded so it holds no glob metacharacters"""
        if not variety:
            return ALL_VARIETIES
        return quote(normalize_variety(variety), safe="")

    def key(self, namespace: str, variety: Optional[str] = None, *parts: Any) -> str:
        segment = self.variety_segment(variety)
        tail = [str(p) if p is not None else "-" for p in parts]
        return ":".join([self.prefix, namespace, segment, *tail])

    def get_or_compute(self, key: str, compute: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        if not self.enabled:
            return compute()

        try:
            value = self.backend.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            value = _MISS

        if value is not _MISS:
            self.hits += 1
            return value

        self.misses += 1
        value = compute()
        try:
            self.backend.set(key, value, ttl or self.ttl)
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
        return value

    def invalidate_variety(self, variety: Optional[str]) -> int:
        """Drop projections of one variety and every all-variety projection"""
        if not self.enabled:
            return 0

        patterns = [f"{self.prefix}:*:{ALL_VARIETIES}:*"]
        if variety:
            patterns.append(f"{self.prefix}:*:{self.variety_segment(variety)}:*")

        removed = 0
        for pattern in patterns:
            try:
                removed += self.backend.delete_pattern(pattern)
            except redis.RedisError as e:
                logger.warning(f"Cache invalidation failed for {pattern}: {e}")
        logger.debug(f"Invalidated {removed} cached projections for variety {variety}")
        return removed

    def clear(self):
        self.backend.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }
