"""Redis store adapter for cachegraph.

Provides async Redis operations for cached values and index records.
Uses redis-py async client for connection pooling. Values are stored as
orjson-encoded bytes, so they must be JSON-compatible.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any, cast

import orjson
import redis.asyncio as redis

from cachegraph.config import settings
from cachegraph.store.base import MISSING, NO_EXPIRATION, Stamp, StoreAdapter

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Module-level connection pool
_redis_client: Redis | None = None

# Compare the SHA-1 of the stored bytes with the caller's stamp, then write.
_CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current == false then
    if ARGV[1] ~= '' then return 0 end
elseif redis.sha1hex(current) ~= ARGV[1] then
    return 0
end
if tonumber(ARGV[3]) > 0 then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
else
    redis.call('SET', KEYS[1], ARGV[2])
end
return 1
"""


async def get_redis(url: str | None = None) -> Redis:
    """Get or create the Redis client.

    Uses connection pooling for efficient connection management. ``url``
    only matters for the first call.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(  # type: ignore[no-untyped-call]
            url or settings.redis_url,
            encoding="utf-8",
            decode_responses=False,  # We're storing bytes
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def _escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters in a literal prefix."""
    for char in ("\\", "*", "?", "[", "]"):
        text = text.replace(char, f"\\{char}")
    return text


def _stamp(raw: bytes) -> str:
    return hashlib.sha1(raw).hexdigest()  # nosec B324 - change detection, not security


class RedisStore(StoreAdapter):
    """Store adapter backed by a Redis server."""

    name = "redis"

    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> Any:
        raw = cast(bytes | None, await self.client.get(key))
        if raw is None:
            return MISSING
        return orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl: int = NO_EXPIRATION) -> None:
        if ttl < 0:
            raise ValueError(f"TTL must be >= 0, got {ttl}")
        data = orjson.dumps(value)
        if ttl == NO_EXPIRATION:
            await self.client.set(key, data)
        else:
            await self.client.set(key, data, ex=ttl)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def time_to_live(self, key: str) -> int | None:
        # -2: absent, -1: no expiration
        ttl = cast(int, await self.client.ttl(key))
        if ttl < 0:
            return None
        return ttl

    async def get_with_stamp(self, key: str) -> tuple[Any, Stamp]:
        raw = cast(bytes | None, await self.client.get(key))
        if raw is None:
            return MISSING, None
        return orjson.loads(raw), _stamp(raw)

    async def compare_and_set(
        self, key: str, value: Any, ttl: int, expected: Stamp
    ) -> bool:
        result = await self.client.eval(  # type: ignore[misc]
            _CAS_SCRIPT,
            1,
            key,
            "" if expected is None else str(expected),
            orjson.dumps(value),
            str(ttl),
        )
        if not result:
            logger.debug(f"CAS conflict on {key}")
        return bool(result)

    async def keys(self, prefix: str = "") -> list[str]:
        found = []
        async for key in self.client.scan_iter(match=f"{_escape_glob(prefix)}*"):
            found.append(key.decode() if isinstance(key, bytes) else key)
        return found

    async def clear(self, prefix: str) -> int:
        deleted = 0

        # Use SCAN to avoid blocking on large keyspaces
        async for key in self.client.scan_iter(match=f"{_escape_glob(prefix)}*"):
            await self.client.delete(key)
            deleted += 1

        return deleted

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            await self.client.ping()
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.close()
