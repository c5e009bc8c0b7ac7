"""Table handles: the record-facing runtime.

A handle owns one :class:`TableDescriptor`, knows its :class:`Manager`, and
keeps the records it loaded keyed by primary key. ``Table`` works with
:class:`Record` objects, ``Entity`` with instances of a plain class described
by :class:`EntityMetadata`. Both share the save and delete logic below.
"""

from __future__ import annotations

import abc
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar

import sqlalchemy as sa

from .descriptor import TableDescriptor
from .exceptions import (
    EntityDefinitionError,
    JoinmapError,
    ReadOnlyRecordError,
    RecordNotFoundError,
    TableMismatchError,
)
from .finder import Finder
from .metadata import EntityMetadata
from .record import Record, RecordState, RecordStatus
from .relations import (
    BelongsTo,
    HasMany,
    HasOne,
    ManyToMany,
    Relation,
    empty_value,
    is_single,
    join_table_keys,
    references_target,
)


if TYPE_CHECKING:
    from .manager import Manager


T = TypeVar("T")

STATE_ATTRIBUTE: Final = "_joinmap_state"
_UNSET: Final = object()


class BaseTable(abc.ABC, Generic[T]):
    __slots__ = ("_loaded", "descriptor", "manager")

    def __init__(self, manager: Manager, descriptor: TableDescriptor) -> None:
        self.manager = manager
        self.descriptor = descriptor
        self._loaded: dict[Any, T] = {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def primary_key(self) -> str:
        if self.descriptor.primary_key is None:
            raise EntityDefinitionError(f"Table {self.name} has no primary key")

        return self.descriptor.primary_key

    # Record access, implemented per record kind.

    @abc.abstractmethod
    def create(self, data: Mapping[str, Any] | None = None) -> T: ...

    @abc.abstractmethod
    def owns(self, obj: object) -> bool: ...

    @abc.abstractmethod
    def is_record(self, obj: object) -> bool:
        """Whether *obj* is a record at all (of any table), as opposed to a key."""

    @abc.abstractmethod
    def state_of(self, obj: T) -> RecordState: ...

    @abc.abstractmethod
    def read(self, obj: T, name: str) -> Any: ...

    @abc.abstractmethod
    def write(self, obj: T, name: str, value: Any) -> None: ...

    @abc.abstractmethod
    def values(self, obj: T) -> dict[str, Any]: ...

    @abc.abstractmethod
    def changed_values(self, obj: T) -> dict[str, Any]: ...

    @abc.abstractmethod
    def _new(self, values: Mapping[str, Any], state: RecordState) -> T: ...

    @abc.abstractmethod
    def _store(self, obj: T, name: str, value: Any) -> None:
        """Write a field value that came from the database (not a change)."""

    @abc.abstractmethod
    def _store_relation(self, obj: T, name: str, value: Any) -> None: ...

    @abc.abstractmethod
    def _relation_value(self, obj: T, name: str) -> Any:
        """The assigned value of a relation, or ``_UNSET`` when never loaded nor assigned."""

    def key_of(self, obj: T) -> Any:
        return None if self.descriptor.primary_key is None else self.read(obj, self.descriptor.primary_key)

    # Hydration

    def hydrate(self, values: Mapping[str, Any], *, read_only: bool = False, extra: Mapping[str, Any] | None = None) -> T:
        return self._new(values, RecordState.loaded(values, read_only=read_only, extra=extra))

    def init_relation(self, obj: T, relation: Relation) -> None:
        self._store_relation(obj, relation.name, empty_value(relation))
        self.state_of(obj).snapshot(relation.name, set())

    def loaded_relation(self, obj: T, name: str) -> Any:
        value = self._relation_value(obj, name)
        return None if value is _UNSET else value

    def attach(self, obj: T, relation: Relation, key: Any, related: Any) -> None:
        snapshots = self.state_of(obj).snapshots.setdefault(relation.name, set())
        if is_single(relation):
            self._store_relation(obj, relation.name, related)
            snapshots.clear()
        else:
            self._relation_value(obj, relation.name)[key] = related

        snapshots.add(key)

    def load_relation(self, obj: T, name: str) -> Any:
        """Fetch relation *name* of *obj* from the database and keep it on the record."""
        relation = self.descriptor.get_relation(name)
        related = self.manager.get(relation.target)
        value = self.read(obj, relation.foreign_key)

        result: Any
        if value is None:
            result = empty_value(relation)
        else:
            match relation:
                case HasOne() | BelongsTo():
                    result = related.find().where_field(relation.target_key, value).first()
                case HasMany():
                    result = related.find().where_field(relation.target_key, value).all()
                case ManyToMany():
                    link, foreign, remote = self._link_table(relation, related)
                    keys = self.manager.builder.select(link.c[remote]).where(link.c[foreign] == value)
                    result = related.find().where_in(relation.target_key, keys).all()

        self.manager.log("Lazy loaded %s.%s", self.name, name)
        self._store_relation(obj, name, result)
        self.state_of(obj).snapshot(name, set(_keys(related, result)))

        return result

    # Lookup

    def find(self) -> Finder[T]:
        return Finder(self)

    def get(self, *keys: Any) -> Any:
        """Load by primary key; a single key is served from the loaded records when possible."""
        if len(keys) == 1 and keys[0] in self._loaded:
            return self._loaded[keys[0]]

        return self.find().get(*keys)

    def remember(self, *records: T) -> None:
        for record in records:
            key = self.key_of(record)
            if key is not None:
                self._loaded[key] = record

    def forget(self, *keys: Any) -> None:
        """Drop loaded records by key, or all of them."""
        if not keys:
            self._loaded.clear()
        for key in keys:
            self._loaded.pop(key, None)

    def __getitem__(self, key: Any) -> T:
        record = self.get(key)
        if record is None:
            raise RecordNotFoundError(self.name, key)

        return record

    def __setitem__(self, key: Any, value: T | Mapping[str, Any]) -> None:
        if isinstance(value, Mapping):
            value = self.create(value)
        elif not self.owns(value):
            raise TableMismatchError(f"Record does not belong to table {self.name}")

        self.write(value, self.primary_key, key)
        self.save(value)

    def __delitem__(self, key: Any) -> None:
        self.delete(key)

    def __contains__(self, key: object) -> bool:
        return key in self._loaded or self.find().where_field(self.primary_key, key).count() > 0

    # Writing

    def save(self, obj: T, *, force_insert: bool = False) -> None:
        """Insert or update *obj* and write its assigned relations.

        Single-valued relations that *obj* refers to are saved first so their
        keys can be copied into *obj*. Has-relations and many-to-many links
        are written after it, diffed against the keys last loaded.
        """
        if not self.owns(obj):
            raise TableMismatchError(f"Record does not belong to table {self.name}")

        state = self.state_of(obj)
        if state.read_only:
            raise ReadOnlyRecordError(f"Record of {self.name} was loaded read-only")

        marker = id(obj)
        if marker in self.manager.saving:
            return

        self.manager.saving.add(marker)
        try:
            with self.manager.transaction():
                self._save_references(obj)
                self._save_row(obj, state, force_insert=force_insert)
                self._save_dependents(obj, state)
        finally:
            self.manager.saving.discard(marker)

    def _save_references(self, obj: T) -> None:
        for relation in self.descriptor.relations.values():
            if not is_single(relation):
                continue

            related = self.manager.get(relation.target)
            if not references_target(relation, related.descriptor):
                continue

            value = self._relation_value(obj, relation.name)
            if value is _UNSET or value is None:
                continue

            related.save(value)
            self.write(obj, relation.foreign_key, related.read(value, relation.target_key))

    def _save_row(self, obj: T, state: RecordState, *, force_insert: bool) -> None:
        builder = self.manager.builder
        primary_key = self.descriptor.primary_key
        values = self.values(obj)
        key = None if primary_key is None else values.get(primary_key)

        if force_insert or key is None or state.status is not RecordStatus.HANDLED:
            data = {name: value for name, value in values.items() if not (name == primary_key and value is None)}
            self.manager.execute(builder.insert(self.descriptor, data), defer=False)
            if primary_key is not None and key is None:
                key = self.manager.driver.last_insert_id()
                self._store(obj, primary_key, key)
                data[primary_key] = key

            self.manager.log("Inserted into %s: %r", self.name, key)
            state.persisted(data)
            self.remember(obj)
            return

        changed = self.changed_values(obj)
        if not changed:
            self.manager.log("Nothing to update on %s: %r", self.name, key)
            return
        if primary_key is None:
            raise JoinmapError(f"Cannot update a row of {self.name}, it has no primary key")

        where = builder.eq(builder.column(self.descriptor, primary_key), state.original.get(primary_key, key))
        self.manager.execute(builder.update(self.descriptor, changed, where))
        self.manager.log("Updated %s %r: %s", self.name, key, ", ".join(changed))
        state.persisted(changed)

    def _save_dependents(self, obj: T, state: RecordState) -> None:
        for relation in self.descriptor.relations.values():
            related = self.manager.get(relation.target)
            match relation:
                case BelongsTo():
                    continue
                case HasOne() if references_target(relation, related.descriptor):
                    continue
                case HasOne() | HasMany():
                    self._save_children(obj, state, relation, related)
                case ManyToMany():
                    self._save_links(obj, state, relation, related)

    def _save_children(self, obj: T, state: RecordState, relation: HasOne | HasMany, related: BaseTable[Any]) -> None:
        value = self._relation_value(obj, relation.name)
        if value is _UNSET:
            return

        owner_value = self.read(obj, relation.foreign_key)
        children = _members(value)
        for child in children:
            related.write(child, relation.target_key, owner_value)
            related.save(child)

        current = {related.key_of(child) for child in children}
        previous = state.snapshots.get(relation.name)
        if previous is not None and (removed := previous - current):
            self.manager.log("Deleting %d %s removed from %s", len(removed), related.name, self.name)
            related.find().where_in(related.primary_key, removed).delete()

        state.snapshot(relation.name, current)

    def _save_links(self, obj: T, state: RecordState, relation: ManyToMany, related: BaseTable[Any]) -> None:
        value = self._relation_value(obj, relation.name)
        if value is _UNSET:
            return

        members = _members(value)
        for member in members:
            related.save(member)

        owner_value = self.read(obj, relation.foreign_key)
        link, foreign, remote = self._link_table(relation, related)
        current = [related.read(member, relation.target_key) for member in members]
        previous = state.snapshots.get(relation.name)

        if previous is None:
            # Never loaded: only add links that are missing.
            cursor = self.manager.driver.query(
                self.manager.builder.select(link.c[remote]).where(link.c[foreign] == owner_value)
            )
            existing = {row[remote] for row in cursor.fetch_all()}
            cursor.close()
            removed: set[Any] = set()
        else:
            existing = previous
            removed = previous - set(current)

        if removed:
            self.manager.execute(
                sa.delete(link).where(link.c[foreign] == owner_value, link.c[remote].in_(list(removed)))
            )
        for key in dict.fromkeys(current):
            if key not in existing:
                self.manager.execute(sa.insert(link).values({foreign: owner_value, remote: key}))

        self.manager.log("Links of %s %r: -%d +%d", relation.name, owner_value, len(removed), len(set(current) - existing))
        state.snapshot(relation.name, set(current))

    def _link_table(self, relation: ManyToMany, related: BaseTable[Any]) -> tuple[sa.TableClause, str, str]:
        foreign, remote = join_table_keys(relation, self.descriptor, related.descriptor)
        return sa.table(relation.join_table or "", sa.column(foreign), sa.column(remote)), foreign, remote

    def delete(self, target: T | Any) -> int:
        """Delete a record, or the record with key *target*, cascading to has-relations."""
        if not self.is_record(target):
            return self.find().where_field(self.primary_key, target).delete()
        if not self.owns(target):
            raise TableMismatchError(f"Record does not belong to table {self.name}")

        state = self.state_of(target)
        if state.read_only:
            raise ReadOnlyRecordError(f"Record of {self.name} was loaded read-only")

        if self.descriptor.primary_key is None:
            count = self.delete_rows([self.values(target)])
        else:
            count = self.find().where_field(self.primary_key, self.key_of(target)).delete()

        state.status = RecordStatus.DELETED
        return count

    def delete_where(self, fragment: str, *params: Any) -> int:
        return self.find().where(fragment, *params).delete()

    def delete_rows(self, rows: list[dict[str, Any]]) -> int:
        """Delete the given rows after deleting their has-relation children and links.

        Belongs-to targets are never touched.
        """
        if not rows:
            return 0

        builder = self.manager.builder
        with self.manager.transaction():
            for relation in self.descriptor.relations.values():
                values = _distinct(row.get(relation.foreign_key) for row in rows)
                if not values:
                    continue

                match relation:
                    case HasOne() | HasMany():
                        related = self.manager.get(relation.target)
                        related.find().where_in(relation.target_key, values).delete()
                    case ManyToMany():
                        link, foreign, _ = self._link_table(relation, self.manager.get(relation.target))
                        self.manager.execute(sa.delete(link).where(link.c[foreign].in_(values)))
                    case BelongsTo():
                        pass

            primary_key = self.descriptor.primary_key
            if primary_key is not None:
                keys = [row[primary_key] for row in rows]
                where = builder.match_keys(builder.column(self.descriptor, primary_key), keys)
                self.forget(*keys)
            else:
                where = sa.or_(
                    *(
                        sa.and_(*(builder.eq(builder.column(self.descriptor, name), value) for name, value in row.items()))
                        for row in rows
                    )
                )
            self.manager.execute(builder.delete(self.descriptor, where))

        self.manager.log("Deleted %d rows from %s", len(rows), self.name)
        return len(rows)


class Table(BaseTable[Record]):
    """Handle for a table whose rows are :class:`Record` objects."""

    __slots__ = ()

    def create(self, data: Mapping[str, Any] | None = None) -> Record:
        return Record(self, data)

    def owns(self, obj: object) -> bool:
        return isinstance(obj, Record) and obj.table.name == self.name

    def is_record(self, obj: object) -> bool:
        return isinstance(obj, Record)

    def state_of(self, obj: Record) -> RecordState:
        return obj.state

    def read(self, obj: Record, name: str) -> Any:
        return obj.get_field(name)

    def write(self, obj: Record, name: str, value: Any) -> None:
        obj.set_field(name, value)

    def values(self, obj: Record) -> dict[str, Any]:
        return obj.to_dict()

    def changed_values(self, obj: Record) -> dict[str, Any]:
        return obj.changed_values()

    def _new(self, values: Mapping[str, Any], state: RecordState) -> Record:
        return Record(self, values, state=state)

    def _store(self, obj: Record, name: str, value: Any) -> None:
        obj._load(name, value)  # noqa: SLF001

    def _store_relation(self, obj: Record, name: str, value: Any) -> None:
        obj.state.relations[name] = value

    def _relation_value(self, obj: Record, name: str) -> Any:
        return obj.state.relations.get(name, _UNSET)


class Entity(BaseTable[T]):
    """Handle for a table mapped onto a plain class through :class:`EntityMetadata`.

    The bookkeeping of each object lives in the object itself, under
    ``_joinmap_state``; changes are found by comparing the current field
    values with the ones last loaded or saved.
    """

    __slots__ = ("metadata",)

    def __init__(self, manager: Manager, metadata: EntityMetadata[T], name: str | None = None) -> None:
        descriptor = metadata.validate().descriptor
        super().__init__(manager, replace(descriptor, name=name) if name else descriptor)
        self.metadata = metadata

    def create(self, data: Mapping[str, Any] | None = None) -> T:
        obj = self.metadata.create(data)
        self.state_of(obj)
        return obj

    def owns(self, obj: object) -> bool:
        return isinstance(obj, self.metadata.cls)

    def is_record(self, obj: object) -> bool:
        return self.owns(obj) or hasattr(obj, STATE_ATTRIBUTE)

    def state_of(self, obj: T) -> RecordState:
        state = getattr(obj, STATE_ATTRIBUTE, None)
        if state is None:
            state = RecordState.new(self.values(obj), self.descriptor.primary_key)
            setattr(obj, STATE_ATTRIBUTE, state)

        return state

    def read(self, obj: T, name: str) -> Any:
        return self.metadata.get_field(obj, name)

    def write(self, obj: T, name: str, value: Any) -> None:
        self.metadata.set_field(obj, name, value)

    def values(self, obj: T) -> dict[str, Any]:
        return self.metadata.to_dict(obj)

    def changed_values(self, obj: T) -> dict[str, Any]:
        original = self.state_of(obj).original
        return {
            name: value
            for name, value in self.values(obj).items()
            if name not in original or original[name] != value
        }

    def _new(self, values: Mapping[str, Any], state: RecordState) -> T:
        obj = self.metadata.create(values)
        setattr(obj, STATE_ATTRIBUTE, state)
        return obj

    def _store(self, obj: T, name: str, value: Any) -> None:
        self.metadata.set_field(obj, name, value)

    def _store_relation(self, obj: T, name: str, value: Any) -> None:
        self.metadata.set_relation(obj, name, value)

    def _relation_value(self, obj: T, name: str) -> Any:
        value = self.metadata.get_relation(obj, name)
        if name not in self.state_of(obj).snapshots and not value:
            return _UNSET

        return value


def _members(value: Any) -> list[Any]:
    """Records held by a relation value: one record, a mapping or an iterable of them."""
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(value.values())
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes, Record)):
        return list(value)

    return [value]


def _keys(table: BaseTable[Any], value: Any) -> list[Any]:
    return [table.key_of(member) for member in _members(value)]


def _distinct(values: Iterable[Any]) -> list[Any]:
    return [value for value in dict.fromkeys(values) if value is not None]
