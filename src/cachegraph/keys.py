"""Cache key schema for cachegraph.

Key format: {prefix}:{space}:{name_b64}[:{version}]

Where:
- prefix: namespace shared by every key of one cache (default "cachegraph")
- space: which index space the key belongs to ("e" entry, "tag", "children", ...)
- name_b64: Base64URL encoded raw name, so ":" in user keys cannot collide
- version: only present for versioned entries

Index records store member *tokens* (the rendered key without the prefix)
so that a member can be a plain entry or a versioned entry.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Union


class KeySpace(str, Enum):
    """Index space a key lives in."""

    ENTRY = "e"
    TAG = "tag"
    CHILDREN = "children"
    DEPENDENTS = "dependents"
    DEPENDENCIES = "dependencies"
    VERSION = "v"
    VERSION_POINTER = "version"
    VERSION_SET = "versions"
    METADATA = "meta"


def _encode(name: str) -> str:
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii").rstrip("=")


def _decode(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding).decode("utf-8")


@dataclass(frozen=True)
class CacheKey:
    """A key in one of the cache's index spaces.

    Two keys with the same raw name but different spaces never render to
    the same store key.
    """

    space: KeySpace
    name: str
    version: int | None = None

    def __post_init__(self) -> None:
        if self.space is KeySpace.VERSION:
            if self.version is None or self.version < 1:
                raise ValueError(f"Versioned key needs a version >= 1, got {self.version!r}")
        elif self.version is not None:
            raise ValueError(f"Only versioned keys carry a version ({self.space.value})")

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def entry(cls, name: str) -> CacheKey:
        """Plain cache entry."""
        return cls(KeySpace.ENTRY, name)

    @classmethod
    def tag(cls, name: str) -> CacheKey:
        """Tag membership record."""
        return cls(KeySpace.TAG, name)

    @classmethod
    def children(cls, parent: CacheKey) -> CacheKey:
        """Child list of a parent."""
        return cls(KeySpace.CHILDREN, parent.token())

    @classmethod
    def dependents(cls, key: CacheKey) -> CacheKey:
        """Keys that depend on ``key``."""
        return cls(KeySpace.DEPENDENTS, key.token())

    @classmethod
    def dependencies(cls, key: CacheKey) -> CacheKey:
        """Keys that ``key`` depends on."""
        return cls(KeySpace.DEPENDENCIES, key.token())

    @classmethod
    def versioned(cls, base: str, version: int) -> CacheKey:
        """One stored version of a logical base key."""
        return cls(KeySpace.VERSION, base, version)

    @classmethod
    def version_pointer(cls, base: str) -> CacheKey:
        """Latest-version pointer of a base key."""
        return cls(KeySpace.VERSION_POINTER, base)

    @classmethod
    def version_set(cls, base: str) -> CacheKey:
        """Registered version numbers of a base key."""
        return cls(KeySpace.VERSION_SET, base)

    @classmethod
    def metadata(cls, key: CacheKey) -> CacheKey:
        """Metadata record of a key."""
        return cls(KeySpace.METADATA, key.token())

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    @property
    def is_versioned(self) -> bool:
        return self.space is KeySpace.VERSION

    def token(self) -> str:
        """Prefix-free identity used inside index records."""
        token = f"{self.space.value}:{_encode(self.name)}"
        if self.version is not None:
            token = f"{token}:{self.version}"
        return token

    def render(self, prefix: str) -> str:
        """Store key for this cache key."""
        return f"{prefix}:{self.token()}"

    @classmethod
    def from_token(cls, token: str) -> CacheKey:
        """Parse a token produced by :meth:`token`.

        Raises:
            ValueError: If the token is malformed
        """
        parts = token.split(":")
        if len(parts) not in (2, 3):
            raise ValueError(f"Malformed key token: {token!r}")

        space = KeySpace(parts[0])
        name = _decode(parts[1])
        version = int(parts[2]) if len(parts) == 3 else None
        return cls(space, name, version)

    def __str__(self) -> str:
        if self.space is KeySpace.ENTRY:
            return self.name
        if self.space is KeySpace.VERSION:
            return f"{self.name}_v{self.version}"
        return f"{self.space.value}:{self.name}"


KeyLike = Union[str, CacheKey]


def as_key(key: KeyLike) -> CacheKey:
    """Coerce a raw string into an entry key."""
    if isinstance(key, CacheKey):
        return key
    return CacheKey.entry(key)


def parse_key(rendered: str, prefix: str) -> CacheKey | None:
    """Parse a rendered store key back into a CacheKey.

    Returns None if the key doesn't belong to ``prefix`` or is malformed.
    """
    head = f"{prefix}:"
    if not rendered.startswith(head):
        return None
    try:
        return CacheKey.from_token(rendered[len(head) :])
    except ValueError:
        return None
