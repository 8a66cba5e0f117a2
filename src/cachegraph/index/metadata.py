"""Per-key metadata records.

Metadata lives under ``CacheKey.metadata(key)`` and never expires on its
own. The facade deletes it together with the owning entry so records do not
outlive their keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from cachegraph.keys import CacheKey
from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from cachegraph.context import CacheContext


@dataclass
class KeyMetadata:
    """Access and lifetime bookkeeping for one key."""

    access_count: int = 0
    created: float | None = None
    updated: float | None = None
    # Lifetime the entry was written with, in seconds (0: no expiration)
    expiration: int | None = None
    access_history: list[float] = field(default_factory=list)
    custom: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> KeyMetadata:
        if not isinstance(data, dict):
            return cls()
        return cls(
            access_count=max(0, int(data.get("access_count", 0))),
            created=data.get("created"),
            updated=data.get("updated"),
            expiration=data.get("expiration"),
            access_history=list(data.get("access_history", [])),
            custom=dict(data.get("custom", {})),
        )


class MetadataStore:
    """Reads and mutates ``KeyMetadata`` records."""

    def __init__(self, ctx: CacheContext) -> None:
        self.ctx = ctx

    async def get(self, key: CacheKey) -> KeyMetadata | None:
        raw = await self.ctx.read(CacheKey.metadata(key))
        if raw is MISSING:
            return None
        return KeyMetadata.from_dict(raw)

    async def set(self, key: CacheKey, meta: KeyMetadata) -> None:
        await self.ctx.write(CacheKey.metadata(key), meta.to_dict())

    async def delete(self, key: CacheKey) -> None:
        await self.ctx.remove(CacheKey.metadata(key))

    async def _mutate(self, key: CacheKey, change: Any) -> KeyMetadata:
        def apply(current: Any) -> dict[str, Any]:
            meta = KeyMetadata() if current is MISSING else KeyMetadata.from_dict(current)
            change(meta)
            return meta.to_dict()

        return KeyMetadata.from_dict(await self.ctx.update(CacheKey.metadata(key), apply))

    async def record_write(self, key: CacheKey, ttl: int) -> KeyMetadata:
        """Stamp creation, update time and expiration of a write."""
        now = self.ctx.clock.now()

        def change(meta: KeyMetadata) -> None:
            if meta.created is None:
                meta.created = now
            meta.updated = now
            meta.expiration = ttl

        return await self._mutate(key, change)

    async def record_access(self, key: CacheKey) -> KeyMetadata:
        """Count one read of ``key``."""
        now = self.ctx.clock.now()
        limit = self.ctx.settings.access_history_limit

        def change(meta: KeyMetadata) -> None:
            meta.access_count += 1
            meta.access_history.append(now)
            if len(meta.access_history) > limit:
                del meta.access_history[: len(meta.access_history) - limit]

        return await self._mutate(key, change)

    async def increment_access_count(self, key: CacheKey, amount: int = 1) -> int:
        def change(meta: KeyMetadata) -> None:
            meta.access_count = max(0, meta.access_count + amount)

        return (await self._mutate(key, change)).access_count

    async def set_field(self, key: CacheKey, name: str, value: Any) -> None:
        """Store a free-form field."""

        def change(meta: KeyMetadata) -> None:
            meta.custom[name] = value

        await self._mutate(key, change)

    async def get_field(self, key: CacheKey, name: str, default: Any = None) -> Any:
        meta = await self.get(key)
        if meta is None:
            return default
        return meta.custom.get(name, default)

    async def access_count(self, key: CacheKey) -> int:
        meta = await self.get(key)
        return meta.access_count if meta else 0

    async def access_counts(self, keys: list[CacheKey]) -> dict[CacheKey, int]:
        return {key: await self.access_count(key) for key in keys}
