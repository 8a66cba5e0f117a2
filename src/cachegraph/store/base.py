"""Base store adapter interface.

Defines the abstract interface for the expiring key-value backend that
cachegraph builds on. Keys are already-rendered strings; the adapter knows
nothing about tags, hierarchies or versions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Hashable
from typing import Any, Final


class _Missing:
    """Sentinel type for absent keys."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()

# Opaque write stamp used for compare-and-swap. None means "key absent".
Stamp = Hashable | None

# TTL value meaning "never expires"
NO_EXPIRATION = 0


class StoreAdapter(ABC):
    """Abstract base class for expiring key-value backends."""

    #: Label used for metrics
    name: str = "store"

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value or ``MISSING``."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = NO_EXPIRATION) -> None:
        """Store a value.

        Args:
            key: Rendered store key
            value: Value to store
            ttl: Lifetime in seconds, 0 means no expiration
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key. Deleting an absent key is a no-op."""
        ...

    @abstractmethod
    async def time_to_live(self, key: str) -> int | None:
        """Remaining lifetime in whole seconds, clamped to >= 0.

        Returns None when the key is absent or has no expiration.
        """
        ...

    @abstractmethod
    async def get_with_stamp(self, key: str) -> tuple[Any, Stamp]:
        """Read a value together with a stamp identifying this write.

        Returns ``(MISSING, None)`` for absent keys.
        """
        ...

    @abstractmethod
    async def compare_and_set(
        self, key: str, value: Any, ttl: int, expected: Stamp
    ) -> bool:
        """Write ``value`` only if the key still carries ``expected``.

        ``expected=None`` means the key must still be absent.

        Returns:
            True if the write happened, False if another writer got there first
        """
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with ``prefix``, in no particular order."""
        ...

    @abstractmethod
    async def clear(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``.

        Returns the number of keys deleted.
        """
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a key is present."""
        return await self.get(key) is not MISSING

    async def close(self) -> None:
        """Release backend resources."""
        return None
