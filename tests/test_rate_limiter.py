"""
Tests for the sliding-window rate limiter.
"""

import asyncio

import pytest

from chatmod.lib.errors import RateLimitExceeded
from chatmod.lib.record_store import InMemoryCounterStore
from chatmod.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture
def limiter(counters, clock):
    # FIXED_NOW_MS falls on a window boundary
    return SlidingWindowRateLimiter(counters, max_requests=10, window_seconds=60, clock=clock.seconds)


async def send(limiter, user_id, times):
    return [(await limiter.check(user_id)).allowed for _ in range(times)]


@pytest.mark.asyncio
async def test_eleventh_send_denied(limiter):
    assert await send(limiter, "u1", 10) == [True] * 10

    decision = await limiter.check("u1")
    assert decision.allowed is False
    assert decision.retry_after_seconds == 60


@pytest.mark.asyncio
async def test_denied_attempts_not_counted(limiter, counters):
    await send(limiter, "u1", 15)
    assert await counters.get("ratelimit:u1:28414800") == 10


@pytest.mark.asyncio
async def test_users_limited_independently(limiter):
    await send(limiter, "u1", 10)
    assert (await limiter.check("u2")).allowed is True


@pytest.mark.asyncio
async def test_previous_window_still_weighs(limiter, clock):
    await send(limiter, "u1", 10)
    clock.advance(60_000)

    decision = await limiter.check("u1")
    assert decision.allowed is False
    assert decision.retry_after_seconds == 6

    clock.advance(6_000)
    assert (await limiter.check("u1")).allowed is True


@pytest.mark.asyncio
async def test_window_fully_slides(limiter, clock):
    await send(limiter, "u1", 10)
    clock.advance(120_000)
    assert await send(limiter, "u1", 10) == [True] * 10


@pytest.mark.asyncio
async def test_enforce_raises_with_retry_after(limiter):
    await send(limiter, "u1", 10)
    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.enforce("u1")
    assert excinfo.value.retry_after_seconds == 60


class YieldingCounterStore(InMemoryCounterStore):
    """Suspends on every call, the way a networked counter store does."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def incr_if_below(self, key, limit, ttl_seconds):
        await asyncio.sleep(0)
        return await super().incr_if_below(key, limit, ttl_seconds)


@pytest.mark.asyncio
async def test_concurrent_sends_cannot_exceed_limit(clock):
    limiter = SlidingWindowRateLimiter(
        YieldingCounterStore(clock=clock.seconds), max_requests=10, window_seconds=60, clock=clock.seconds
    )

    decisions = await asyncio.gather(*(limiter.check("u1") for _ in range(20)))

    assert sum(1 for d in decisions if d.allowed) == 10
    assert all(d.retry_after_seconds == 60 for d in decisions if not d.allowed)


@pytest.mark.asyncio
async def test_concurrent_sends_respect_previous_window(clock):
    counters = YieldingCounterStore(clock=clock.seconds)
    limiter = SlidingWindowRateLimiter(counters, max_requests=10, window_seconds=60, clock=clock.seconds)
    await send(limiter, "u1", 10)
    # Half the previous window still weighs: 10 * 0.5 leaves room for 5
    clock.advance(90_000)

    decisions = await asyncio.gather(*(limiter.check("u1") for _ in range(10)))

    assert sum(1 for d in decisions if d.allowed) == 5
