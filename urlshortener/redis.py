"""Redis client management and the cache contract used by the core.

Flow Diagram — Cache Operations
=============================
::
    ┌─────────────┐
    │  Service /  │
    │  Guard call │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ CACHE_      │
    │ ENABLED?    │
    └──────┬──────┘
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────────┐
│ No-op   │  │ Redis call  │
│ (None/0)│  │ + timeout   │
└─────────┘  └──────┬──────┘
                   ▼
            ┌─────────────┐
            │ RedisError / │
            │ timeout →    │
            │ CacheUnavail.│
            └─────────────┘

How to Use
===========
**Step 1 — Build the cache**::
    cache = Cache(await get_redis(), settings)

**Step 2 — Call the contract**::
    await cache.set_with_ttl("short:abc1234", payload, 86400)
    count = await cache.increment_with_expire("ratelimit:1.2.3.4", 900)

Key Behaviours
===============
- Values are stored as JSON; counters are plain integers.
- Every call carries its own timeout (``CACHE_TIMEOUT_SECONDS``).
- Failures surface as ``CacheUnavailableError``; callers decide whether to
  fall back (resolution), fail open (guard) or log (invalidation).
- With ``CACHE_ENABLED`` false every operation is a no-op.

Functions:
    get_redis():  Lazily created shared client.
    close_redis():  Cleanup function for shutdown.
"""

import asyncio
import json
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from urlshortener.config import Settings, get_settings
from urlshortener.exceptions import CacheUnavailableError

__all__ = ["Cache", "close_redis", "get_redis"]

settings = get_settings()

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


class Cache:
    """Shared TTL key-value cache reachable by every server instance."""

    def __init__(self, client: redis.Redis, settings: Settings | None = None):
        self._client = client
        self._settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return self._settings.CACHE_ENABLED

    async def _call(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.CACHE_TIMEOUT_SECONDS)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheUnavailableError(f"{operation} failed: {exc!r}") from exc

    async def get(self, key: str) -> Any:
        if not self.enabled:
            return None
        raw = await self._call("GET", self._client.get(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheUnavailableError(f"GET {key} returned undecodable data") from exc

    async def set_with_ttl(self, key: str, value: Any, ttl_seconds: int) -> None:
        if not self.enabled:
            return
        await self._call("SET", self._client.set(key, json.dumps(value, default=str), ex=max(int(ttl_seconds), 1)))

    async def delete(self, key: str) -> None:
        if not self.enabled:
            return
        await self._call("DEL", self._client.delete(key))

    async def increment_with_expire(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` and make sure its window has an expiry.

        INCR and TTL go out in one pipeline. EXPIRE is sent whenever the key
        has no TTL, so a window whose first EXPIRE was lost is repaired by
        the next increment instead of counting forever.
        """
        if not self.enabled:
            return 0
        pipeline = self._client.pipeline()
        pipeline.incr(key)
        pipeline.ttl(key)
        count, remaining = await self._call("INCR", pipeline.execute())
        if remaining is None or remaining < 0:
            await self._call("EXPIRE", self._client.expire(key, ttl_seconds))
        return int(count)

    async def ttl(self, key: str) -> int | None:
        if not self.enabled:
            return None
        remaining = await self._call("TTL", self._client.ttl(key))
        # -2: missing key, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    async def ping(self) -> bool:
        return bool(await self._call("PING", self._client.ping()))
