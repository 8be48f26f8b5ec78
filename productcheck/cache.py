"""Caching helpers.

* :class:`SuggestionCache` memoizes merged suggestion results per normalized
  key with a TTL and batch eviction under capacity pressure.
* :class:`RedisCache` / :class:`InMemoryCache` back the external validation
  cache, with Redis primary and in-memory fallback.
"""
from __future__ import annotations

import heapq
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

import redis

from .config import Settings
from .models import ExternalProduct

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    suggestions: tuple[str, ...]
    external_products: tuple[ExternalProduct, ...]
    created_at: float


class SuggestionCache:
    """Time-bounded, capacity-bounded memo of suggestion results.

    Expired entries are dropped lazily on ``get``. When a new key would push
    the size over ``capacity`` the ``evict_batch`` entries with the oldest
    ``created_at`` are removed before the insert.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        capacity: int = 50,
        evict_batch: int = 10,
        clock: Clock = time.monotonic,
    ) -> None:
        if capacity < 1 or evict_batch < 1:
            raise ValueError("capacity and evict_batch must be positive")
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self.evict_batch = evict_batch
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = time.monotonic) -> "SuggestionCache":
        return cls(
            ttl_seconds=settings.suggestion_cache_ttl_seconds,
            capacity=settings.suggestion_cache_capacity,
            evict_batch=settings.suggestion_cache_evict_batch,
            clock=clock,
        )

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self.ttl_seconds:
            self._store.pop(key, None)
            logger.debug("suggestion cache expired key=%r", key)
            return None
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        if key not in self._store and len(self._store) + 1 > self.capacity:
            self._evict_oldest()
        self._store[key] = entry

    def put(
        self,
        key: str,
        suggestions: Sequence[str],
        external_products: Sequence[ExternalProduct],
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            suggestions=tuple(suggestions),
            external_products=tuple(external_products),
            created_at=self._clock(),
        )
        self.set(key, entry)
        return entry

    def clear(self) -> None:
        self._store.clear()

    def _evict_oldest(self) -> None:
        oldest = heapq.nsmallest(self.evict_batch, self._store.values(), key=lambda item: item.created_at)
        for entry in oldest:
            self._store.pop(entry.key, None)
        logger.debug("suggestion cache evicted %s entries, size=%s", len(oldest), len(self._store))


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None: ...


@dataclass
class RedisCache:
    client: redis.Redis
    prefix: str = "productcheck:validation:"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            data = self.client.get(self.prefix + key)
        except redis.RedisError as exc:
            logger.warning("Redis get failed: %s", exc)
            return None
        if not data:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        try:
            self.client.setex(self.prefix + key, ttl, json.dumps(value))
        except redis.RedisError as exc:
            logger.warning("Redis set failed: %s", exc)


class InMemoryCache:
    def __init__(self, clock: Clock = time.time) -> None:
        self._store: Dict[str, tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._store.get(key)
            if not value:
                return None
            expires_at, payload = value
            if expires_at < self._clock():
                self._store.pop(key, None)
                return None
            return payload

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        with self._lock:
            self._store[key] = (self._clock() + ttl, value)


def create_validation_cache(settings: Settings) -> CacheBackend:
    try:
        client = redis.Redis(host=settings.redis_host, port=settings.redis_port, decode_responses=False)
        client.ping()
        logger.info("Using Redis validation cache at %s:%s", settings.redis_host, settings.redis_port)
        return RedisCache(client)
    except redis.RedisError:
        logger.warning("Redis not available, using in-memory validation cache")
        return InMemoryCache()
