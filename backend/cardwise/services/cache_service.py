"""Redis cache service for web search summaries."""

import hashlib
import json
import logging
from typing import Any

import redis.asyncio as redis

from cardwise.config import settings

logger = logging.getLogger(__name__)

TTL_SEARCH = 30 * 60  # 30 minutes


class CacheService:
    """Redis-backed cache; every operation degrades to a miss when Redis is down."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis | None:
        if self._redis is None:
            try:
                self._redis = redis.from_url(self._url, encoding="utf-8", decode_responses=True)
                await self._redis.ping()
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Redis unavailable, cache disabled: {e}")
                self._redis = None
                return None
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or error."""
        try:
            r = await self._get_redis()
            if r is None:
                return None
            raw = await r.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = TTL_SEARCH) -> bool:
        """Set a value in cache with TTL. Returns False on error."""
        try:
            r = await self._get_redis()
            if r is None:
                return False
            await r.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    # Typed helpers

    def search_key(self, query: str, domains: list[str]) -> str:
        digest = hashlib.sha256(f"{query.strip().lower()}|{','.join(sorted(domains))}".encode()).hexdigest()
        return f"search:{digest[:32]}"

    async def get_search(self, query: str, domains: list[str]) -> dict | None:
        return await self.get(self.search_key(query, domains))

    async def set_search(self, query: str, domains: list[str], data: dict, ttl: int = TTL_SEARCH):
        await self.set(self.search_key(query, domains), data, ttl)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


cache_service = CacheService()
