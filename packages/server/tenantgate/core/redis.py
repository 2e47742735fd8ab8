"""Redis connection management and fixed-window rate limiting."""

from __future__ import annotations

import redis.asyncio as redis


def create_redis(url: str) -> redis.Redis:
    """Create a Redis client; connections are opened lazily."""
    return redis.from_url(url, decode_responses=True)


class RateLimiter:
    """Fixed-window counter: at most ``limit`` hits per key per window."""

    def __init__(self, client: redis.Redis, limit: int, window_seconds: int,
                 prefix: str = "tg:ratelimit"):
        self._client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self._prefix = prefix

    async def hit(self, key: str) -> bool:
        """Record a hit for ``key``. Returns False once the window is exhausted."""
        name = f"{self._prefix}:{key}"
        count = await self._client.incr(name)
        if count == 1:
            await self._client.expire(name, self.window_seconds)
        return count <= self.limit
