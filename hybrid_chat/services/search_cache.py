# =============================================================================
# Search Result Cache: In-Memory or Redis
# =============================================================================
#
# Caches web search results per (query, limit) for a bounded TTL, so
# repeated and follow-up questions do not pay for another search call.
#
# Values are JSON-compatible dicts, so both backends store the same thing:
#   {"hits": [{"title": ..., "url": ..., ...}, ...], "note": "..."}
#
# DESIGN DECISION: Last writer wins. Two concurrent requests for the same
# key both search and both write; entries are independent per key and
# there is no cross-key invariant to protect.
#
# DESIGN DECISION: Graceful degradation for Redis. If Redis is unavailable,
# reads miss and writes are dropped with a warning. A cache outage costs
# latency, never a failed chat request.
# =============================================================================

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from hybrid_chat.config import settings

logger = logging.getLogger(__name__)


def cache_key(query: str, limit: int) -> str:
    return f"{query}::{limit}"


class SearchCache(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        ...


# ---------------------------------------------------------------------------
# In-Memory Backend
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    value: dict[str, Any]
    expires_at: float


class InMemorySearchCache:
    """
    Process-local TTL cache with LRU eviction.

    `clock` defaults to time.monotonic and can be replaced in tests to
    move time forward without sleeping.
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        self._entries[key] = _CacheEntry(
            value=value,
            expires_at=self._clock() + ttl_seconds,
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Redis Backend
# ---------------------------------------------------------------------------


class RedisSearchCache:
    """Redis-backed cache shared by every worker process."""

    def __init__(self, url: str, prefix: str = "hybrid-chat:search:") -> None:
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(url, decode_responses=True)
        self._prefix = prefix

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self._redis.get(self._prefix + key)
        except Exception as e:
            logger.warning("Search cache read failed (Redis error): %s", e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable search cache entry %s", key)
            return None

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self._redis.set(
                self._prefix + key,
                json.dumps(value, ensure_ascii=False),
                ex=ttl_seconds,
            )
        except Exception as e:
            logger.warning("Search cache write failed (Redis error): %s", e)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_cache: InMemorySearchCache | RedisSearchCache | None = None


def get_search_cache() -> InMemorySearchCache | RedisSearchCache:
    """Redis when SEARCH_CACHE_REDIS_URL is set, else in-memory. Lazy singleton."""
    global _cache
    if _cache is None:
        if settings.search_cache_redis_url:
            logger.info("Using Redis search cache")
            _cache = RedisSearchCache(settings.search_cache_redis_url)
        else:
            logger.info("Using in-memory search cache")
            _cache = InMemorySearchCache()
    return _cache
