from __future__ import annotations

from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int


class DistributedRateLimiter:
    def __init__(self, cache: CacheBackend) -> None:
        self.cache = cache

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        current = await self.cache.incr(key, ttl=window_seconds)
        return RateLimitResult(
            allowed=current <= limit,
            current=current,
            limit=limit,
        )


class TicketOpenRateLimiter:
    """Guild-scoped bucket of ticket-open tokens, refilled at the start of every window."""

    def __init__(self, limiter: DistributedRateLimiter, tokens: int, window_seconds: int) -> None:
        self.limiter = limiter
        self.tokens = tokens
        self.window_seconds = window_seconds

    @staticmethod
    def key_for(guild_id: int) -> str:
        return f"ticket:open:{guild_id}"

    async def take_token(self, guild_id: int) -> bool:
        result = await self.limiter.hit(
            self.key_for(guild_id),
            limit=self.tokens,
            window_seconds=self.window_seconds,
        )
        return result.allowed
