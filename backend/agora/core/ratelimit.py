"""
Request rate limiting with Redis.

Fixed-window counters per scope and client IP. Used as a router-level
FastAPI dependency: a generous budget for general API traffic and a small
one for authentication attempts.
"""

import redis.asyncio as redis
from fastapi import Request
from loguru import logger
from redis.exceptions import RedisError

from agora.core.config import settings
from agora.core.exceptions import RateLimitError


class RateLimiter:
    """
    Fixed-window request limiter.

    Usage:
        auth_limiter = RateLimiter("auth", limit=5, window_seconds=900)
        router.include_router(auth.router, dependencies=[Depends(auth_limiter)])
    """

    def __init__(
        self,
        scope: str,
        limit: int,
        window_seconds: int,
        message: str | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._redis = client

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _key(self, client_id: str) -> str:
        return f"ratelimit:{self.scope}:{client_id}"

    async def hit(self, client_id: str) -> tuple[int, int]:
        """
        Count one request.

        Returns:
            (requests in current window, seconds until the window resets)
        """
        if not self._redis:
            await self.connect()

        key = self._key(client_id)
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self.window_seconds)
            return count, self.window_seconds

        ttl = await self._redis.ttl(key)
        if ttl < 0:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE)
            await self._redis.expire(key, self.window_seconds)
            ttl = self.window_seconds
        return count, ttl

    async def __call__(self, request: Request) -> None:
        if not settings.rate_limit_enabled:
            return

        client_id = request.client.host if request.client else "unknown"

        try:
            count, ttl = await self.hit(client_id)
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return

        if count > self.limit:
            logger.warning(
                f"Rate limit exceeded for {client_id} on {self.scope} "
                f"({count}/{self.limit})"
            )
            raise RateLimitError(self.message, retry_after=ttl)


api_limiter = RateLimiter(
    "api",
    limit=settings.rate_limit_api_requests,
    window_seconds=settings.rate_limit_window_seconds,
)

auth_limiter = RateLimiter(
    "auth",
    limit=settings.rate_limit_auth_requests,
    window_seconds=settings.rate_limit_window_seconds,
    message="Too many authentication attempts, please try again later.",
)
