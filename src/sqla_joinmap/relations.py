"""Relation model.

A relation is one of four frozen dataclasses. Together they form a closed
union (:data:`Relation`); code that behaves differently per kind matches on
the concrete class instead of calling overridable methods.

All kinds share the join rule ``owner.foreign_key = related.target_key``.
``foreign_key`` names a column of the owning table, ``target_key`` a column of
the related table. ``ManyToMany`` goes through a join table whose columns
default to ``<owner table>_<foreign_key>`` and ``<related table>_<target_key>``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union


if TYPE_CHECKING:
    from .descriptor import TableDescriptor


class RelationKind(enum.Enum):
    HAS_ONE = "has one"
    HAS_MANY = "has many"
    BELONGS_TO = "belongs to"
    MANY_TO_MANY = "many to many"


@dataclass(frozen=True, slots=True)
class HasOne:
    name: str
    target: str
    foreign_key: str
    target_key: str

    kind = RelationKind.HAS_ONE


@dataclass(frozen=True, slots=True)
class HasMany:
    name: str
    target: str
    foreign_key: str
    target_key: str

    kind = RelationKind.HAS_MANY


@dataclass(frozen=True, slots=True)
class BelongsTo:
    name: str
    target: str
    foreign_key: str
    target_key: str

    kind = RelationKind.BELONGS_TO


@dataclass(frozen=True, slots=True)
class ManyToMany:
    name: str
    target: str
    foreign_key: str
    target_key: str
    join_table: str | None = None
    join_table_foreign_key: str | None = None
    join_table_target_key: str | None = None

    kind = RelationKind.MANY_TO_MANY


Relation = Union[HasOne, HasMany, BelongsTo, ManyToMany]

_KINDS: dict[RelationKind, type[HasOne | HasMany | BelongsTo | ManyToMany]] = {
    RelationKind.HAS_ONE: HasOne,
    RelationKind.HAS_MANY: HasMany,
    RelationKind.BELONGS_TO: BelongsTo,
    RelationKind.MANY_TO_MANY: ManyToMany,
}


def make_relation(
    kind: RelationKind | str,
    name: str,
    *,
    target: str,
    foreign_key: str,
    target_key: str,
    **join: str | None,
) -> Relation:
    """Create a relation from its kind (``"has many"``, ``RelationKind.HAS_ONE`` ...)."""
    cls = _KINDS[RelationKind(kind)]
    if join and cls is not ManyToMany:
        raise TypeError(f"{cls.__name__} does not take join table options")

    return cls(name, target, foreign_key, target_key, **join)


def is_single(relation: Relation) -> bool:
    """Single-valued relations hold one record, the others a keyed collection."""
    match relation:
        case HasOne() | BelongsTo():
            return True
        case HasMany() | ManyToMany():
            return False


def is_has(relation: Relation) -> bool:
    """``HasOne``/``HasMany``: the inverse side of a ``BelongsTo``."""
    return isinstance(relation, (HasOne, HasMany))


def empty_value(relation: Relation) -> dict[object, object] | None:
    """Value of a loaded relation that matched no rows."""
    return None if is_single(relation) else {}


def join_table_keys(
    relation: ManyToMany, owner: TableDescriptor, related: TableDescriptor
) -> tuple[str, str]:
    """Return the join table's (owner side, related side) column names."""
    foreign = relation.join_table_foreign_key or f"{owner.table_name}_{relation.foreign_key}"
    target = relation.join_table_target_key or f"{related.table_name}_{relation.target_key}"

    return foreign, target


def references_target(relation: Relation, related: TableDescriptor) -> bool:
    """True when the owning row stores the key of the related row.

    ``BelongsTo`` always does. ``HasOne`` does when it points at the related
    primary key (``HasOne(foreign_key="fk", target_key="id")``); when it points
    at a non-key column the reference lives on the related row instead, which
    is how discovered ``author -> post(author_id)`` relations look.
    """
    match relation:
        case BelongsTo():
            return True
        case HasOne():
            return relation.target_key == related.primary_key
        case HasMany() | ManyToMany():
            return False
