from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cache(Protocol):
    """External key/value store used to persist discovered schemas."""

    def has(self, key: str) -> bool: ...

    def get(self, key: str) -> Any: ...

    def store(self, key: str, value: Any, lifetime: int | None = None) -> None: ...


class MemoryCache:
    """Process-local cache with per-entry expiry.

    Example:
        >>> cache = MemoryCache()
        >>> cache.store("orm.tables", {"post": ...}, 3600)
        >>> cache.has("orm.tables")
        True
    """

    __slots__ = ("_clock", "_entries")

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False

        expires = entry[1]
        if expires is not None and expires <= self._clock():
            del self._entries[key]
            return False

        return True

    def get(self, key: str) -> Any:
        if not self.has(key):
            return None

        return self._entries[key][0]

    def store(self, key: str, value: Any, lifetime: int | None = None) -> None:
        expires = None if lifetime is None else self._clock() + lifetime
        self._entries[key] = (value, expires)

    def invalidate(self, key: str | None = None) -> None:
        """Drop *key*, or every entry when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
