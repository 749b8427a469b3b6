from __future__ import annotations

import pytest

from services.cache import MemoryCache
from utils.rate_limit import DistributedRateLimiter, TicketOpenRateLimiter


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_limit() -> None:
    cache = MemoryCache()
    limiter = DistributedRateLimiter(cache)

    result1 = await limiter.hit("k1", limit=2, window_seconds=1)
    result2 = await limiter.hit("k1", limit=2, window_seconds=1)
    result3 = await limiter.hit("k1", limit=2, window_seconds=1)

    assert result1.allowed is True
    assert result2.allowed is True
    assert result3.allowed is False
    assert result3.current == 3


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_window() -> None:
    clock = ManualClock()
    limiter = DistributedRateLimiter(MemoryCache(clock=clock))

    assert (await limiter.hit("k2", limit=1, window_seconds=30)).allowed is True
    clock.now += 29
    assert (await limiter.hit("k2", limit=1, window_seconds=30)).allowed is False
    clock.now += 1
    assert (await limiter.hit("k2", limit=1, window_seconds=30)).allowed is True


@pytest.mark.asyncio
async def test_ticket_open_tokens_are_per_guild() -> None:
    clock = ManualClock()
    limiter = TicketOpenRateLimiter(DistributedRateLimiter(MemoryCache(clock=clock)), tokens=2, window_seconds=30)

    assert await limiter.take_token(1) is True
    assert await limiter.take_token(1) is True
    assert await limiter.take_token(1) is False
    assert await limiter.take_token(2) is True

    clock.now += 30
    assert await limiter.take_token(1) is True


def test_ticket_open_key() -> None:
    assert TicketOpenRateLimiter.key_for(42) == "ticket:open:42"
