"""Declarative metadata binding plain Python classes to tables.

Example:
    >>> class Post:
    ...     def __init__(self):
    ...         self.id = None
    ...         self.title = ""
    ...         self.tags = {}
    >>> metadata = EntityMetadata(Post, "post")
    >>> metadata.add_field("id", primary_key=True)
    'id'
    >>> metadata.add_field("title")
    'title'
    >>> metadata.add_relation(
    ...     "tags",
    ...     ManyToMany("tags", "tag", "id", "id", join_table="post_tag",
    ...                join_table_foreign_key="post_id", join_table_target_key="tag_id"),
    ... )
    >>> metadata.descriptor.fields
    ('id', 'title')
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .datastructures import frozendict
from .descriptor import TableDescriptor
from .exceptions import EntityDefinitionError, FieldNotFoundError, RelationNotFoundError
from .relations import ManyToMany, Relation


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Accessor:
    """Reads and writes one value of an object, through an attribute or methods."""

    property: str
    getter: str | None = None
    setter: str | None = None

    @classmethod
    def create(cls, property: str, *, getter: bool | str | None = None, setter: bool | str | None = None) -> Accessor:  # noqa: A002
        return cls(property, _method_name("get", property, getter), _method_name("set", property, setter))

    def get(self, obj: object) -> Any:
        if self.getter is not None:
            return getattr(obj, self.getter)()

        return getattr(obj, self.property, None)

    def set(self, obj: object, value: Any) -> None:
        if self.setter is not None:
            getattr(obj, self.setter)(value)
        else:
            setattr(obj, self.property, value)

    def methods(self) -> tuple[str, ...]:
        return tuple(name for name in (self.getter, self.setter) if name is not None)


def _method_name(prefix: str, property: str, option: bool | str | None) -> str | None:  # noqa: A002
    match option:
        case None | False:
            return None
        case True:
            return f"{prefix}_{property}"
        case str():
            return option


class EntityMetadata(Generic[T]):
    """Field and relation mapping of an entity class.

    ``setter=True``/``getter=True`` route access through ``set_<property>`` /
    ``get_<property>`` methods; a string names the method explicitly; the
    default reads and writes the attribute itself.
    """

    def __init__(self, cls: type[T], table: str | None = None) -> None:
        self.cls = cls
        self.table = table or cls.__name__.lower()
        self.primary_key: str | None = None
        self.fields: dict[str, Accessor] = {}
        self.relations: dict[str, Relation] = {}
        self.relation_accessors: dict[str, Accessor] = {}

    def __repr__(self) -> str:
        return f"<EntityMetadata {self.cls.__name__} -> {self.table}>"

    def add_field(
        self,
        property: str,  # noqa: A002
        name: str | None = None,
        *,
        setter: bool | str | None = None,
        getter: bool | str | None = None,
        primary_key: bool = False,
    ) -> str:
        """Map *property* to column *name* (defaults to the property name)."""
        name = name or property
        self.fields[name] = Accessor.create(property, getter=getter, setter=setter)
        if primary_key:
            self.set_primary_key(name)

        return name

    def set_primary_key(self, field: str) -> None:
        if field not in self.fields:
            raise EntityDefinitionError(f"Class {self.cls.__name__} does not have a field called {field}")
        if self.primary_key is not None and self.primary_key != field:
            raise EntityDefinitionError(
                f"Class {self.cls.__name__} declares more than one primary key: {self.primary_key}, {field}"
            )

        self.primary_key = field

    def add_relation(
        self,
        property: str,  # noqa: A002
        relation: Relation,
        *,
        setter: bool | str | None = None,
        getter: bool | str | None = None,
    ) -> None:
        self.relations[relation.name] = relation
        self.relation_accessors[relation.name] = Accessor.create(property, getter=getter, setter=setter)

    def validate(self) -> EntityMetadata[T]:
        """Check the definition; raises :class:`EntityDefinitionError`."""
        name = self.cls.__name__
        if self.primary_key is None:
            raise EntityDefinitionError(f"Class {name} has no primary key")

        for accessor in (*self.fields.values(), *self.relation_accessors.values()):
            for method in accessor.methods():
                if not callable(getattr(self.cls, method, None)):
                    raise EntityDefinitionError(f"Class {name} does not have a method called {method}")

        for relation in self.relations.values():
            if isinstance(relation, ManyToMany) and not relation.join_table:
                raise EntityDefinitionError(f"Many-many relation {name}.{relation.name} has no join table")

        return self

    @property
    def descriptor(self) -> TableDescriptor:
        return TableDescriptor(
            name=self.table,
            primary_key=self.primary_key,
            fields=tuple(self.fields),
            relations=frozendict(self.relations),
        )

    def create(self, data: Mapping[str, Any] | None = None) -> T:
        obj = self.cls()
        for key, value in (data or {}).items():
            self.set_field(obj, key, value)

        return obj

    def to_dict(self, obj: object) -> dict[str, Any]:
        return {name: accessor.get(obj) for name, accessor in self.fields.items()}

    def get_field(self, obj: object, name: str) -> Any:
        return self._field(name).get(obj)

    def set_field(self, obj: object, name: str, value: Any) -> None:
        self._field(name).set(obj, value)

    def get_relation(self, obj: object, name: str) -> Any:
        return self._relation(name).get(obj)

    def set_relation(self, obj: object, name: str, value: Any) -> None:
        self._relation(name).set(obj, value)

    def _field(self, name: str) -> Accessor:
        try:
            return self.fields[name]
        except KeyError:
            raise FieldNotFoundError(name, self.table) from None

    def _relation(self, name: str) -> Accessor:
        try:
            return self.relation_accessors[name]
        except KeyError:
            raise RelationNotFoundError(name, self.table) from None
