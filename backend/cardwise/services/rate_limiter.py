"""Fixed-window rate limiting keyed by client identity.

Two backends share the ``is_allowed(key)`` interface:
- ``InMemoryRateLimiter``: per-process dict under an ``asyncio.Lock``
- ``RedisRateLimiter``: ``INCR`` + ``EXPIRE`` so limits hold across workers
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis

from cardwise.config import settings

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window_seconds = window_seconds

    @abstractmethod
    async def is_allowed(self, key: str) -> bool:
        """True when the request under ``key`` fits in the current window."""


class InMemoryRateLimiter(RateLimiter):
    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        super().__init__(limit, window_seconds)
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}  # key -> (window start, count)
        self._lock = asyncio.Lock()

    async def is_allowed(self, key: str) -> bool:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            start, count = self._windows.get(key, (now, 0))
            if count >= self.limit:
                return False
            self._windows[key] = (start, count + 1)
            return True

    def _prune(self, now: float) -> None:
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in expired:
            del self._windows[k]


class RedisRateLimiter(RateLimiter):
    """Fails open when Redis is unreachable."""

    def __init__(self, limit: int, window_seconds: int, prefix: str, client: redis.Redis | None = None):
        super().__init__(limit, window_seconds)
        self.prefix = prefix
        self._redis = client

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def is_allowed(self, key: str) -> bool:
        redis_key = f"ratelimit:{self.prefix}:{key}"
        try:
            r = self._client()
            count = await r.incr(redis_key)
            if count == 1:
                await r.expire(redis_key, self.window_seconds)
            return count <= self.limit
        except redis.RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def build_rate_limiter(name: str, limit: int) -> RateLimiter:
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(limit, settings.rate_limit_window_seconds, prefix=name)
    return InMemoryRateLimiter(limit, settings.rate_limit_window_seconds)


chat_rate_limiter = build_rate_limiter("chat", settings.chat_rate_limit)
search_rate_limiter = build_rate_limiter("search", settings.search_rate_limit)
