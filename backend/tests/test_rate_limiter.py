import asyncio

import pytest
import redis.asyncio as redis

from cardwise.services.rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    async def incr(self, key):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds


@pytest.mark.asyncio
async def test_in_memory_limit_per_key_and_window():
    clock = Clock()
    limiter = InMemoryRateLimiter(limit=2, window_seconds=60, clock=clock)

    assert await limiter.is_allowed("1.2.3.4")
    assert await limiter.is_allowed("1.2.3.4")
    assert not await limiter.is_allowed("1.2.3.4")
    assert await limiter.is_allowed("5.6.7.8")

    clock.now += 59
    assert not await limiter.is_allowed("1.2.3.4")
    clock.now += 1
    assert await limiter.is_allowed("1.2.3.4")


@pytest.mark.asyncio
async def test_in_memory_limit_holds_under_concurrency():
    limiter = InMemoryRateLimiter(limit=5, window_seconds=60, clock=Clock())
    results = await asyncio.gather(*(limiter.is_allowed("client") for _ in range(20)))
    assert results.count(True) == 5


@pytest.mark.asyncio
async def test_expired_windows_are_pruned():
    clock = Clock()
    limiter = InMemoryRateLimiter(limit=1, window_seconds=10, clock=clock)
    for i in range(50):
        await limiter.is_allowed(f"client-{i}")
    clock.now += 10
    await limiter.is_allowed("fresh")
    assert list(limiter._windows) == ["fresh"]


@pytest.mark.asyncio
async def test_redis_limiter_counts_and_sets_expiry_once():
    client = FakeRedis()
    limiter = RedisRateLimiter(limit=2, window_seconds=900, prefix="chat", client=client)

    assert [await limiter.is_allowed("ip") for _ in range(3)] == [True, True, False]
    assert client.counts == {"ratelimit:chat:ip": 3}
    assert client.expiries == {"ratelimit:chat:ip": 900}


@pytest.mark.asyncio
async def test_redis_limiter_fails_open():
    limiter = RedisRateLimiter(limit=1, window_seconds=60, prefix="search", client=FakeRedis(fail=True))
    assert await limiter.is_allowed("ip")
    assert await limiter.is_allowed("ip")


def test_base_limiter_is_abstract():
    with pytest.raises(TypeError):
        RateLimiter(1, 60)
