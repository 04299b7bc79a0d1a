"""Result cache with Redis backend and in-memory fallback.

Caches per-kind lookup results. Keys embed the snapshot version, so a
rebuild invalidates everything without an explicit purge.

TTL adapts to result size:
  - ≥ 100 hits: doubled (max 30 min)
  - < 5 hits: halved (min 1 min)
Empty results are never cached.

Graceful degradation: if Redis is unavailable, uses cachetools.TLRUCache in-memory
(per-entry TTL, same as Redis).
"""

import hashlib
import json
import logging

from cachetools import TLRUCache

from bazar_search.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Async cache with Redis primary and in-memory fallback."""

    def __init__(self):
        self._redis = None
        # values are (ttl, data) so each entry expires on its own schedule
        self._fallback = TLRUCache(maxsize=2048, ttu=lambda _key, value, now: now + value[0])
        self._available = False

    @property
    def redis_available(self) -> bool:
        return self._available

    async def connect(self) -> bool:
        """Connect to Redis. Returns True on success."""
        try:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
            )
            await self._redis.ping()
            self._available = True
            return True
        except Exception as e:
            logger.warning("Redis connection failed — using in-memory fallback: %s", str(e)[:100])
            self._redis = None
            self._available = False
            return False

    async def disconnect(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._available = False

    def make_key(self, version: int, kind: str, canonical: str, filters: dict, limit: int, offset: int = 0) -> str:
        """Deterministic cache key: search:{version}:{kind}:{hash(query, filters, limit, offset)}."""
        normalized = json.dumps(
            {"q": canonical, "filters": filters, "limit": limit, "offset": offset},
            sort_keys=True, ensure_ascii=False,
        )
        digest = hashlib.sha256(normalized.encode()).hexdigest()[:32]
        return f"search:{version}:{kind}:{digest}"

    def get_ttl(self, result_count: int) -> int:
        """TTL in seconds for a result of the given size."""
        ttl = settings.cache_ttl_search
        if result_count >= 100:
            return min(ttl * 2, settings.cache_ttl_max)
        if result_count < 5:
            return max(ttl // 2, settings.cache_ttl_min)
        return ttl

    async def get(self, key: str) -> list | None:
        """Read from cache. Returns None on miss."""
        if self._available and self._redis:
            try:
                data = await self._redis.get(key)
                if data:
                    logger.debug("Cache HIT (Redis) | key=%s", key)
                    return json.loads(data)
            except Exception as e:
                logger.debug("Redis GET error: %s", str(e)[:100])

        entry = self._fallback.get(key)
        data = entry[1] if entry else None
        if data:
            logger.debug("Cache HIT (memory) | key=%s", key)
            return data

        return None

    async def set(self, key: str, data: list, ttl: int | None = None) -> bool:
        """Write to cache with TTL. Empty results are skipped."""
        if not data:
            return False
        ttl = ttl or self.get_ttl(len(data))

        if self._available and self._redis:
            try:
                await self._redis.setex(key, ttl, json.dumps(data, ensure_ascii=False, default=str))
                logger.debug("Cache SET (Redis) | key=%s | ttl=%ds", key, ttl)
            except Exception as e:
                logger.debug("Redis SET error: %s", str(e)[:100])

        # Always write to in-memory fallback too
        self._fallback[key] = (ttl, data)
        return True

    async def invalidate(self, pattern: str):
        """Delete keys matching pattern."""
        if self._available and self._redis:
            try:
                keys = []
                async for key in self._redis.scan_iter(match=pattern):
                    keys.append(key)
                if keys:
                    await self._redis.delete(*keys)
                    logger.info("Cache invalidated %d keys matching '%s'", len(keys), pattern)
            except Exception as e:
                logger.debug("Redis invalidate error: %s", str(e)[:100])
        self._fallback.clear()


# Singleton instance
cache_service = CacheService()
