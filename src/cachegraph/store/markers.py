"""Durable marker store.

A non-expiring key/value space, separate from the TTL store, that records
which keys were scheduled as persistent together with their last value.
Bulk clears of the TTL store leave it untouched, which is what lets
persistent keys be restored afterwards.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, cast

import orjson

from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from redis.asyncio import Redis


class MarkerStore(ABC):
    """Abstract base class for durable marker backends."""

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Record a marker for ``key``."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the marker value or ``MISSING``."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the marker for ``key``."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """List every marked key."""
        ...


class MemoryMarkerStore(MarkerStore):
    """Dict-backed marker store."""

    def __init__(self) -> None:
        self._markers: dict[str, Any] = {}

    async def put(self, key: str, value: Any) -> None:
        self._markers[key] = copy.deepcopy(value)

    async def get(self, key: str) -> Any:
        if key not in self._markers:
            return MISSING
        return copy.deepcopy(self._markers[key])

    async def delete(self, key: str) -> None:
        self._markers.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._markers)


class RedisMarkerStore(MarkerStore):
    """Markers kept in a single Redis hash.

    The hash lives outside the cache key prefix so prefix clears of the
    TTL store do not reach it.
    """

    def __init__(self, client: Redis, hash_key: str = "cachegraph-markers"):
        self.client = client
        self.hash_key = hash_key

    async def put(self, key: str, value: Any) -> None:
        await self.client.hset(self.hash_key, key, orjson.dumps(value))  # type: ignore[misc]

    async def get(self, key: str) -> Any:
        raw = cast(bytes | None, await self.client.hget(self.hash_key, key))  # type: ignore[misc]
        if raw is None:
            return MISSING
        return orjson.loads(raw)

    async def delete(self, key: str) -> None:
        await self.client.hdel(self.hash_key, key)  # type: ignore[misc]

    async def keys(self) -> list[str]:
        raw_keys = await self.client.hkeys(self.hash_key)  # type: ignore[misc]
        return [k.decode() if isinstance(k, bytes) else k for k in raw_keys]
