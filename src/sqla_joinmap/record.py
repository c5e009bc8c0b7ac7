from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import FieldNotFoundError, RelationNotFoundError


if TYPE_CHECKING:
    from .table import Table


class RecordStatus(enum.Enum):
    NEW = "new"
    NEW_WITH_PRIMARY_KEY = "new with primary key"
    HANDLED = "handled"
    DELETED = "deleted"


@dataclass(slots=True, eq=False)
class RecordState:
    """Bookkeeping kept alongside a record (or entity object).

    ``original`` holds the values as last read from or written to the
    database. ``snapshots`` holds, per loaded relation, the related keys at
    that moment; saving diffs the current relation content against it.
    """

    status: RecordStatus = RecordStatus.NEW
    original: dict[str, Any] = field(default_factory=dict)
    changed: list[str] = field(default_factory=list)
    relations: dict[str, Any] = field(default_factory=dict)
    snapshots: dict[str, set[Any]] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    read_only: bool = False

    @classmethod
    def new(cls, data: Mapping[str, Any], primary_key: str | None) -> RecordState:
        has_key = primary_key is not None and data.get(primary_key) is not None
        return cls(status=RecordStatus.NEW_WITH_PRIMARY_KEY if has_key else RecordStatus.NEW)

    @classmethod
    def loaded(cls, data: Mapping[str, Any], *, read_only: bool = False, extra: Mapping[str, Any] | None = None) -> RecordState:
        return cls(status=RecordStatus.HANDLED, original=dict(data), extra=dict(extra or {}), read_only=read_only)

    def mark_changed(self, name: str) -> None:
        if name not in self.changed:
            self.changed.append(name)

    def persisted(self, values: Mapping[str, Any]) -> None:
        """Values were written; they become the new originals."""
        self.status = RecordStatus.HANDLED
        self.original.update(values)
        self.changed.clear()

    def snapshot(self, name: str, keys: set[Any]) -> None:
        self.snapshots[name] = set(keys)


class Record:
    """One table row with change tracking and lazily loaded relations.

    Fields are limited to the owning table's columns; relations to its
    declared relations. Writing a field its current value is not a change.

    Example:
        >>> post = manager["post"][1]
        >>> post["title"] = "Renamed"
        >>> post.changed_values()
        {'title': 'Renamed'}
        >>> post.get_relation("comment")  # loaded on first access
        {1: <Record comment {...}>, 2: <Record comment {...}>}
    """

    __slots__ = ("_data", "state", "table")

    def __init__(self, table: Table, data: Mapping[str, Any] | None = None, *, state: RecordState | None = None) -> None:
        self.table = table
        self._data: dict[str, Any] = {}
        for name, value in (data or {}).items():
            self._check_field(name)
            self._data[name] = value
        self.state = state if state is not None else RecordState.new(self._data, table.descriptor.primary_key)

    def __repr__(self) -> str:
        return f"<Record {self.table.name} {self._data!r}>"

    def __getitem__(self, name: str) -> Any:
        return self.get_field(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set_field(name, value)

    def __contains__(self, name: object) -> bool:
        return name in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    @property
    def key(self) -> Any:
        primary_key = self.table.descriptor.primary_key
        return None if primary_key is None else self._data.get(primary_key)

    @property
    def extra(self) -> dict[str, Any]:
        """Additional selected values (``count(*) as n``) that are not table fields."""
        return self.state.extra

    def get_field(self, name: str) -> Any:
        self._check_field(name)
        return self._data.get(name)

    def set_field(self, name: str, value: Any) -> None:
        self._check_field(name)
        if name in self._data and self._data[name] == value:
            return

        self._data[name] = value
        self.state.mark_changed(name)

    def has_relation(self, name: str) -> bool:
        return self.table.descriptor.has_relation(name)

    def is_loaded(self, name: str) -> bool:
        return name in self.state.relations

    def get_relation(self, name: str) -> Any:
        """Related record(s); fetched from the database on first access."""
        if name not in self.state.relations:
            self.table.load_relation(self, name)

        return self.state.relations[name]

    def set_relation(self, name: str, value: Any) -> None:
        if not self.has_relation(name):
            raise RelationNotFoundError(name, self.table.name)

        self.state.relations[name] = value

    def changed_values(self) -> dict[str, Any]:
        return {name: self._data.get(name) for name in self.state.changed}

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def save(self, *, force_insert: bool = False) -> None:
        self.table.save(self, force_insert=force_insert)

    def delete(self) -> None:
        self.table.delete(self)

    def _check_field(self, name: str) -> None:
        if name not in self.table.descriptor.fields:
            raise FieldNotFoundError(name, self.table.name)

    def _load(self, name: str, value: Any) -> None:
        # Written by the table handle after an INSERT; not a user change.
        self._data[name] = value
