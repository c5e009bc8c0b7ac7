from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import final

from .datastructures import frozendict
from .exceptions import EntityDefinitionError, RelationNotFoundError, UnknownTableError
from .relations import BelongsTo, HasMany, HasOne, ManyToMany, Relation


_RELATION_LABELS = {
    HasOne: "Has one",
    HasMany: "Has many",
    BelongsTo: "Belongs to",
    ManyToMany: "In many-many type relationship with",
}


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    """Per-table metadata: logical name, primary key, fields and relations.

    ``name`` is the logical (unprefixed) table id used as the schema key and as
    the root alias in queries; ``table_name`` is the physical name. Descriptors
    are immutable and hashable, so a whole schema can key an ``lru_cache``.
    """

    name: str
    primary_key: str | None
    fields: tuple[str, ...]
    relations: frozendict[str, Relation] = field(default_factory=frozendict)
    table_name: str = ""

    def __post_init__(self) -> None:
        if not self.table_name:
            object.__setattr__(self, "table_name", self.name)
        if not isinstance(self.relations, frozendict):
            object.__setattr__(self, "relations", frozendict(self.relations))
        if self.primary_key is not None and self.primary_key not in self.fields:
            raise EntityDefinitionError(
                f"Primary key '{self.primary_key}' of {self.name} is not one of its fields"
            )

    def has_relation(self, name: str) -> bool:
        return name in self.relations

    def get_relation(self, name: str) -> Relation:
        try:
            return self.relations[name]
        except KeyError:
            raise RelationNotFoundError(name, self.name) from None

    def with_relation(self, relation: Relation) -> TableDescriptor:
        """Return a copy with *relation* added (or replaced) under its name."""
        return TableDescriptor(
            name=self.name,
            primary_key=self.primary_key,
            fields=self.fields,
            relations=self.relations.set(relation.name, relation),
            table_name=self.table_name,
        )

    def describe(self) -> str:
        lines = [f"Primary key: {self.primary_key}", f"Fields: {', '.join(self.fields)}", "Relations:"]
        lines.extend(
            f"\t{_RELATION_LABELS[type(relation)]} {name}" for name, relation in self.relations.items()
        )
        return "\n\t".join(lines)


@final
class Schema(Mapping[str, TableDescriptor]):
    """Read-only registry of table descriptors keyed by table id.

    Relation targets are resolved through the schema, so every query builder
    and hydrator works against one consistent snapshot. A schema is hashable;
    registering a new table produces a new schema instead of mutating this one.
    """

    __slots__ = ("_tables",)

    def __init__(self, tables: Mapping[str, TableDescriptor] | Iterable[TableDescriptor] = ()) -> None:
        if isinstance(tables, Mapping):
            self._tables: frozendict[str, TableDescriptor] = frozendict(tables)
        else:
            self._tables = frozendict((table.name, table) for table in tables)

    def __getitem__(self, name: str) -> TableDescriptor:
        """Look up a table by id, raising ``UnknownTableError`` if missing."""
        try:
            return self._tables[name]
        except KeyError:
            raise UnknownTableError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def get(self, name: str, default: TableDescriptor | None = None) -> TableDescriptor | None:  # type: ignore[override]
        return self._tables.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __hash__(self) -> int:
        return hash(self._tables)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Schema):
            return self._tables == other._tables

        return NotImplemented

    def __repr__(self) -> str:
        return f"<Schema {list(self._tables)!r}>"

    @property
    def tables(self) -> frozendict[str, TableDescriptor]:
        """The underlying id-to-descriptor mapping (read-only)."""
        return self._tables

    def register(self, descriptor: TableDescriptor) -> Schema:
        """Return a new schema with *descriptor* added under its name."""
        return Schema(self._tables.set(descriptor.name, descriptor))

    def related(self, table: str, relation: str) -> TableDescriptor:
        """Descriptor of the table that *relation* of *table* points at."""
        return self[self[table].get_relation(relation).target]
