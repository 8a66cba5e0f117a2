"""In-process store adapter.

Keeps entries in a dict with lazy expiry. Values are deep-copied on the
way in and out so callers observe the same isolation a networked backend
gives them. Time comes from an injectable clock, which makes TTL expiry
testable without sleeping.
"""

from __future__ import annotations

import copy
import itertools
import logging
import math
from dataclasses import dataclass
from typing import Any

from cachegraph.clock import Clock, SystemClock
from cachegraph.store.base import MISSING, NO_EXPIRATION, Stamp, StoreAdapter

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    value: Any
    expires_at: float | None
    stamp: int


class MemoryStore(StoreAdapter):
    """Dict-backed expiring store."""

    name = "memory"

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self._data: dict[str, _Slot] = {}
        self._stamps = itertools.count(1)

    def _live(self, key: str) -> _Slot | None:
        """Return the slot for ``key`` unless it has expired."""
        slot = self._data.get(key)
        if slot is None:
            return None
        if slot.expires_at is not None and slot.expires_at <= self.clock.now():
            del self._data[key]
            return None
        return slot

    def _write(self, key: str, value: Any, ttl: int) -> None:
        expires_at = None if ttl == NO_EXPIRATION else self.clock.now() + ttl
        self._data[key] = _Slot(
            value=copy.deepcopy(value),
            expires_at=expires_at,
            stamp=next(self._stamps),
        )

    async def get(self, key: str) -> Any:
        slot = self._live(key)
        if slot is None:
            return MISSING
        return copy.deepcopy(slot.value)

    async def set(self, key: str, value: Any, ttl: int = NO_EXPIRATION) -> None:
        if ttl < 0:
            raise ValueError(f"TTL must be >= 0, got {ttl}")
        self._write(key, value, ttl)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def time_to_live(self, key: str) -> int | None:
        slot = self._live(key)
        if slot is None or slot.expires_at is None:
            return None
        return max(0, math.ceil(slot.expires_at - self.clock.now()))

    async def get_with_stamp(self, key: str) -> tuple[Any, Stamp]:
        slot = self._live(key)
        if slot is None:
            return MISSING, None
        return copy.deepcopy(slot.value), slot.stamp

    async def compare_and_set(
        self, key: str, value: Any, ttl: int, expected: Stamp
    ) -> bool:
        slot = self._live(key)
        current = slot.stamp if slot is not None else None
        if current != expected:
            logger.debug(f"CAS conflict on {key}: expected {expected}, found {current}")
            return False
        self._write(key, value, ttl)
        return True

    async def keys(self, prefix: str = "") -> list[str]:
        return [
            key
            for key in list(self._data)
            if key.startswith(prefix) and self._live(key) is not None
        ]

    async def clear(self, prefix: str) -> int:
        doomed = [key for key in self._data if key.startswith(prefix)]
        for key in doomed:
            del self._data[key]
        return len(doomed)

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)
