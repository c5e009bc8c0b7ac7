from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Union


if sys.version_info >= (3, 11):
    from typing import Required, TypedDict, Unpack
else:
    from typing_extensions import Required, TypedDict, Unpack

import sqlalchemy as sa

from .datastructures import frozendict
from .descriptor import Schema, TableDescriptor
from .exceptions import FieldNotFoundError
from .relations import BelongsTo, HasMany, HasOne, ManyToMany, Relation, join_table_keys
from .sqlbuilder import PositionalParameters, table_clause
from .tools import (
    _format_pattern,
    column_label,
    expand_paths,
    is_expression,
    prefixed,
    split_alias,
    unique_alias,
)


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """``field = value``; ``field IN (...)`` for a sequence or a sub-select."""

    field: str
    value: Any

    def clause(self, table: sa.FromClause, parameters: PositionalParameters) -> sa.ColumnElement[bool]:
        column = table.c[self.field]
        if isinstance(self.value, sa.Select):
            return column.in_(self.value)
        if self.value is None:
            return column.is_(None)

        bind = parameters.allocate(self.value)
        return column.in_(bind) if bind.expanding else column == bind


@dataclass(frozen=True, slots=True)
class TextFilter:
    """Raw SQL fragment with ``?`` placeholders."""

    fragment: str
    params: tuple[Any, ...] = ()

    def clause(self, table: sa.FromClause, parameters: PositionalParameters) -> sa.TextClause:
        return parameters.fragment(f"({self.fragment})", self.params)


Filter = Union[FieldFilter, TextFilter]


@dataclass(frozen=True, slots=True)
class JoinNode:
    """One table of a joined SELECT and how to read it back from a row.

    ``labels`` maps each field to its result column label; ``pk_label`` is
    the label of the primary key (``None`` for keyless tables).
    """

    path: str
    name: str
    alias: str
    table: str
    relation: Relation | None
    labels: frozendict[str, str]
    pk_label: str | None
    children: tuple[JoinNode, ...] = ()

    def values(self, row: Mapping[str, Any]) -> dict[str, Any]:
        return {name: row.get(label) for name, label in self.labels.items()}

    def walk(self) -> tuple[JoinNode, ...]:
        """This node and all nodes below it, depth first."""
        return (self, *(node for child in self.children for node in child.walk()))


@dataclass(frozen=True, slots=True)
class SelectPlan:
    statement: sa.Select[Any]
    root: JoinNode
    extra_fields: tuple[str, ...] = ()

    @property
    def pk_label(self) -> str | None:
        return self.root.pk_label

    @property
    def has_relations(self) -> bool:
        return bool(self.root.children)

    @property
    def sql(self) -> str:
        return str(self.statement)

    @property
    def count_statement(self) -> sa.Select[Any]:
        """``count(*)``, or ``count(DISTINCT <root key>)`` when relations are joined."""
        subquery = self.statement.order_by(None).limit(None).offset(None).subquery()
        if self.has_relations and self.pk_label is not None:
            return sa.select(sa.func.count(sa.distinct(subquery.c[self.pk_label])))

        return sa.select(sa.func.count()).select_from(subquery)


@dataclass(slots=True, frozen=True)
class _SelectParams:
    schema: Schema
    table: str
    columns: tuple[str, ...] = ()
    relations: tuple[str, ...] = ()
    where: tuple[Filter, ...] = ()
    having: tuple[TextFilter, ...] = ()
    conditions: frozendict[str, TextFilter] = field(default_factory=frozendict)
    group_by: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    for_update: bool = False


class _SelectParamsType(TypedDict, total=False):
    schema: Required[Schema]
    table: Required[str]
    columns: tuple[str, ...]
    relations: tuple[str, ...]
    where: tuple[Filter, ...]
    having: tuple[TextFilter, ...]
    conditions: Mapping[str, TextFilter]
    group_by: tuple[str, ...]
    order_by: tuple[str, ...]
    limit: int | None
    offset: int | None
    for_update: bool


class SelectBuilder:
    """Builds one SELECT that LEFT JOINs every requested relation path.

    Each joined table is aliased after its relation (nested ones as
    ``<parent alias>_<relation>``) and each column is labelled
    ``<alias>_<column>`` (suffixed when taken), so the hydrator can split a
    flat row per table. Without relations the root columns keep their own names and
    LIMIT/OFFSET go into the SQL; with relations they are applied while
    hydrating, over distinct root keys.

    One instance is created per unique set of parameters; ``_select_plan``
    caches the resulting plan via ``@lru_cache``.
    """

    __slots__ = (
        "_aliases",
        "_from",
        "_labels",
        "_parameters",
        "_root",
        "_tables",
        "descriptor",
        "params",
        "schema",
    )

    def __init__(self, params: _SelectParams) -> None:
        self.params = params
        self.schema = params.schema
        self.descriptor = params.schema[params.table]
        self._parameters = PositionalParameters()
        self._aliases: set[str] = {self.descriptor.name}
        self._labels: set[str] = set()
        self._root = self._root_table()
        self._tables: dict[str, sa.FromClause] = {self.descriptor.name: self._root}
        self._from: sa.FromClause = self._root

    def build(self) -> SelectPlan:
        params = self.params
        root_table = self._root
        paths = expand_paths(params.relations)

        # Placeholders are allocated in order: WHERE, HAVING, join conditions.
        where = [self._check(condition).clause(root_table, self._parameters) for condition in params.where]
        having = [condition.clause(root_table, self._parameters) for condition in params.having]

        joined = bool(paths)
        labels = self._label_columns(self.descriptor.name, self.descriptor, labelled=joined)
        children = tuple(
            self._join(self.descriptor, root_table, self.descriptor.name, name, "", paths)
            for name in paths
            if "." not in name
        )
        root = self._node("", "", self.descriptor.name, self.descriptor, None, labels, children)

        columns: list[sa.ColumnElement[Any]] = []
        for node in root.walk():
            table = self._tables[node.alias]
            columns.extend(table.c[name].label(label) for name, label in node.labels.items())
        extra_columns, extra_fields = self._extra_columns()

        statement = sa.select(*columns, *extra_columns).select_from(self._from)
        if where:
            statement = statement.where(*where)
        if params.group_by:
            statement = statement.group_by(*(self._column_or_text(item) for item in params.group_by))
        if having:
            statement = statement.having(sa.and_(*having))
        if params.order_by:
            statement = statement.order_by(*(self._order_clause(item) for item in params.order_by))
        if not joined:
            if params.limit is not None:
                statement = statement.limit(params.limit)
            if params.offset:
                statement = statement.offset(params.offset)
        if params.for_update:
            statement = statement.with_for_update()

        return SelectPlan(statement=statement, root=root, extra_fields=extra_fields)

    def _root_table(self) -> sa.FromClause:
        table = table_clause(self.descriptor)
        return table.alias(self.descriptor.name) if self.descriptor.table_name != self.descriptor.name else table

    def _join(
        self,
        parent: TableDescriptor,
        parent_table: sa.FromClause,
        parent_alias: str,
        name: str,
        parent_path: str,
        paths: Sequence[str],
    ) -> JoinNode:
        relation = parent.get_relation(name)
        related = self.schema[relation.target]
        path = f"{parent_path}.{name}" if parent_path else name
        alias = unique_alias(name if not parent_path else f"{parent_alias}_{name}", self._aliases)
        self._aliases.add(alias)
        target = table_clause(related).alias(alias)
        self._tables[alias] = target
        labels = self._label_columns(alias, related, labelled=True)

        extra = self.params.conditions.get(path)
        condition = () if extra is None else (extra.clause(target, self._parameters),)

        match relation:
            case HasOne() | HasMany() | BelongsTo():
                onclause = parent_table.c[relation.foreign_key] == target.c[relation.target_key]
                self._from = self._from.outerjoin(target, sa.and_(onclause, *condition))
            case ManyToMany():
                foreign, remote = join_table_keys(relation, parent, related)
                link_name = unique_alias(relation.join_table or "", self._aliases)
                self._aliases.add(link_name)
                link: sa.FromClause = sa.table(relation.join_table or "", sa.column(foreign), sa.column(remote))
                if link_name != relation.join_table:
                    link = link.alias(link_name)

                self._from = self._from.outerjoin(link, parent_table.c[relation.foreign_key] == link.c[foreign])
                self._from = self._from.outerjoin(
                    target, sa.and_(link.c[remote] == target.c[relation.target_key], *condition)
                )

        below = prefixed(paths, name)
        children = tuple(
            self._join(related, target, alias, child, path, below) for child in below if "." not in child
        )

        return self._node(path, name, alias, related, relation, labels, children)

    def _label_columns(self, alias: str, descriptor: TableDescriptor, *, labelled: bool) -> frozendict[str, str]:
        """Result labels for the columns of one joined table.

        ``<alias>_<column>`` can repeat a label of another table (the
        ``author_id`` column of ``post`` and the ``id`` column of
        ``post_author``), so a taken label is suffixed like a taken alias.
        Parents are labelled before their children and keep the plain form.
        """
        if not labelled:
            self._labels.update(descriptor.fields)
            return frozendict((column, column) for column in descriptor.fields)

        labels: dict[str, str] = {}
        for column in descriptor.fields:
            label = unique_alias(column_label(alias, column), self._labels)
            self._labels.add(label)
            labels[column] = label

        return frozendict(labels)

    def _node(
        self,
        path: str,
        name: str,
        alias: str,
        descriptor: TableDescriptor,
        relation: Relation | None,
        labels: frozendict[str, str],
        children: tuple[JoinNode, ...],
    ) -> JoinNode:
        pk = descriptor.primary_key
        return JoinNode(
            path=path,
            name=name,
            alias=alias,
            table=descriptor.name,
            relation=relation,
            labels=labels,
            pk_label=None if pk is None else labels[pk],
            children=children,
        )

    def _extra_columns(self) -> tuple[list[sa.ColumnElement[Any]], tuple[str, ...]]:
        columns: list[sa.ColumnElement[Any]] = []
        names: list[str] = []
        for item in self.params.columns:
            if item in self.descriptor.fields:
                continue

            expression, alias = split_alias(item)
            if alias is not None:
                columns.append(sa.literal_column(expression).label(alias))
                names.append(alias)
            else:
                columns.append(sa.literal_column(item))
                if not is_expression(item):
                    names.append(item)

        return columns, tuple(names)

    def _check(self, condition: Filter) -> Filter:
        if isinstance(condition, FieldFilter) and condition.field not in self.descriptor.fields:
            raise FieldNotFoundError(condition.field, self.descriptor.name)

        return condition

    def _column_or_text(self, item: str) -> sa.ColumnElement[Any]:
        if item in self.descriptor.fields:
            return self._root.c[item]

        return sa.literal_column(item)

    def _order_clause(self, item: str) -> sa.ColumnElement[Any]:
        name, _, direction = item.strip().partition(" ")
        direction = direction.strip().lower()
        if name not in self.descriptor.fields or direction not in ("", "asc", "desc"):
            return sa.text(item)

        column = self._root.c[name]
        match direction:
            case "desc":
                return column.desc()
            case "asc":
                return column.asc()
            case _:
                return column


@lru_cache(maxsize=1028)
def _select_plan(params: _SelectParams) -> SelectPlan:
    """Build (and memoise) the plan for one hashable parameter set."""
    return SelectBuilder(params).build()


def joinmap_select(**params: Unpack[_SelectParamsType]) -> SelectPlan:
    """Create the joined SELECT and its hydration plan for a root table.

    Args:
        schema: Schema
            Table descriptors the root table and relations resolve against.
        table: str
            Logical id of the root table.
        columns: tuple[str, ...]
            Extra expressions to select, e.g. ``("count(*) as n",)``.
        relations: tuple[str, ...]
            Dot-paths of relations to LEFT JOIN, e.g. ``("post.comment", "tag")``.
        where: tuple[Filter, ...]
            Root filters (``FieldFilter`` or ``TextFilter``).
        having: tuple[TextFilter, ...]
            HAVING fragments.
        conditions: Mapping[str, TextFilter]
            Extra ``ON`` conditions per relation path.
        group_by, order_by: tuple[str, ...]
            Root field names or raw fragments (``"title DESC"``).
        limit, offset: int | None
            Emitted as SQL only when no relations are joined.
        for_update: bool
            Append ``FOR UPDATE``.

    Returns:
        A :class:`SelectPlan` holding the statement and the join tree.

    Examples:
        Posts with their comments and tags::

            plan = joinmap_select(
                schema=schema,
                table="post",
                relations=("comment", "tag"),
                where=(FieldFilter("author_id", 1),),
            )
    """
    params["conditions"] = frozendict(params.get("conditions", {}))
    select_params = _SelectParams(**params)
    try:
        hash(select_params)
    except TypeError:
        # Unhashable filter values (lists) cannot key the cache.
        return SelectBuilder(select_params).build()

    return _select_plan(select_params)


def joinmap_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {fn.__name__: fn.cache_info() for fn in (_select_plan, table_clause, _format_pattern)}


def joinmap_cache_clear() -> None:
    """Clear all internal LRU caches."""
    for fn in (_select_plan, table_clause, _format_pattern):
        fn.cache_clear()
