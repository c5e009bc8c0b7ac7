from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping.

    Table descriptors, relation maps and whole schemas are stored in
    frozendicts so that they can take part in ``lru_cache`` keys when
    statements are memoised.

    Example:
        >>> relations = frozendict({"post": "has many"})
        >>> relations["post"]
        'has many'
        >>> relations.set("tag", "many to many")
        <frozendict {'post': 'has many', 'tag': 'many to many'}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: object) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Lazily computed: values are only required to be hashable when the
        # mapping is actually used as a cache key.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash

    def set(self, key: K, value: V) -> Self:
        """Return a copy with *key* bound to *value*.

        Unlike ``copy(**kw)`` the key does not have to be a valid identifier,
        which matters for dot-path keys such as ``"post.comment"``.
        """
        return type(self)({**self._dict, key: value})

    def copy(self, **add_or_replace: Any) -> Self:
        """Create a new frozendict with additional or replaced items."""
        return type(self)(self._dict, **add_or_replace)

    def merge(self, items: Mapping[K, V] | Iterable[tuple[K, V]]) -> Self:
        """Return a copy updated with *items*; later keys win."""
        merged = dict(self._dict)
        merged.update(items)
        return type(self)(merged)
