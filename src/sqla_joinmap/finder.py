from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import sqlalchemy as sa

from .core import FieldFilter, Filter, SelectPlan, TextFilter, joinmap_select
from .datastructures import frozendict


if TYPE_CHECKING:
    from .table import BaseTable


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class FindParams:
    columns: tuple[str, ...] = ()
    relations: tuple[str, ...] = ()
    conditions: frozendict[str, TextFilter] = field(default_factory=frozendict)
    where: tuple[Filter, ...] = ()
    having: tuple[TextFilter, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    for_update: bool = False
    read_only: bool = False


class Finder(Generic[T]):
    """Immutable query over one table handle.

    Every call returns a new finder, so a finder can be stored and extended
    without affecting the original.

    Example:
        >>> posts = manager["post"].find().with_("comment", "tag").order_by("id DESC")
        >>> recent = posts.limit(10).all()
        >>> drafts = posts.where_field("published", False).all()
    """

    __slots__ = ("params", "table")

    def __init__(self, table: BaseTable[T], params: FindParams | None = None) -> None:
        self.table = table
        self.params = params or FindParams()

    def __repr__(self) -> str:
        return f"<Finder {self.table.name} {self.params!r}>"

    def __iter__(self) -> Iterator[T]:
        return iter(self.all().values())

    def _replace(self, **changes: Any) -> Finder[T]:
        return Finder(self.table, replace(self.params, **changes))

    def select(self, *columns: str) -> Finder[T]:
        """Select extra expressions; ``"count(*) as n"`` ends up in ``record.extra``."""
        return self._replace(columns=(*self.params.columns, *columns))

    def with_(self, *relations: str, conditions: Mapping[str, str | tuple[Any, ...]] | None = None) -> Finder[T]:
        """Eagerly join *relations* (dot-paths), optionally with extra ``ON`` conditions per path.

        Example:
            >>> finder.with_("comment.author", conditions={"comment": ("comment.approved = ?", True)})
        """
        extra = {path: _text_filter(condition) for path, condition in (conditions or {}).items()}
        return self._replace(
            relations=(*self.params.relations, *relations),
            conditions=self.params.conditions.merge(extra),
        )

    def where(self, fragment: str, *params: Any) -> Finder[T]:
        return self._replace(where=(*self.params.where, TextFilter(fragment, params)))

    def where_field(self, name: str, value: Any) -> Finder[T]:
        if isinstance(value, (list, set, frozenset)):
            value = tuple(value)

        return self._replace(where=(*self.params.where, FieldFilter(name, value)))

    def where_in(self, name: str, values: Any) -> Finder[T]:
        """``name IN (...)`` against values or a sub-select."""
        if not isinstance(values, sa.Select):
            values = tuple(values)

        return self._replace(where=(*self.params.where, FieldFilter(name, values)))

    def having(self, fragment: str, *params: Any) -> Finder[T]:
        return self._replace(having=(*self.params.having, TextFilter(fragment, params)))

    def group_by(self, *columns: str) -> Finder[T]:
        return self._replace(group_by=(*self.params.group_by, *columns))

    def order_by(self, *columns: str) -> Finder[T]:
        return self._replace(order_by=(*self.params.order_by, *columns))

    def limit(self, limit: int | None) -> Finder[T]:
        return self._replace(limit=limit)

    def offset(self, offset: int | None) -> Finder[T]:
        return self._replace(offset=offset)

    def for_update(self) -> Finder[T]:
        return self._replace(for_update=True)

    def read_only(self) -> Finder[T]:
        return self._replace(read_only=True)

    @property
    def plan(self) -> SelectPlan:
        params = self.params
        return joinmap_select(
            schema=self.table.manager.schema,
            table=self.table.name,
            columns=params.columns,
            relations=params.relations,
            where=params.where,
            having=params.having,
            conditions=params.conditions,
            group_by=params.group_by,
            order_by=params.order_by,
            limit=params.limit,
            offset=params.offset,
            for_update=params.for_update,
        )

    @property
    def statement(self) -> sa.Select[Any]:
        return self.plan.statement

    @property
    def sql(self) -> str:
        return self.plan.sql

    def all(self) -> dict[Any, T]:
        """Matching records keyed by primary key, in result order."""
        return self._fetch(single=False)

    def first(self) -> T | None:
        finder = self if self.params.relations else self.limit(1)
        return finder._fetch(single=True)

    def get(self, *keys: Any) -> Any:
        """One record (or ``None``) for a single key, a mapping for several."""
        primary_key = self.table.primary_key
        if len(keys) == 1:
            return self.where_field(primary_key, keys[0]).first()

        return self.where_in(primary_key, keys).all()

    def count(self) -> int:
        cursor = self.table.manager.driver.query(self.plan.count_statement)
        try:
            row = cursor.fetch_one()
        finally:
            cursor.close()

        return 0 if row is None else int(next(iter(row.values())))

    def delete(self) -> int:
        """Delete matching rows, cascading to has-relations; returns the number of rows."""
        finder = self._replace(columns=(), relations=(), conditions=frozendict(), read_only=True)
        cursor = self.table.manager.driver.query(finder.plan.statement)
        try:
            rows = cursor.fetch_all()
        finally:
            cursor.close()

        return self.table.delete_rows(rows)

    def _fetch(self, *, single: bool) -> Any:
        plan = self.plan
        manager = self.table.manager
        manager.log("Query: %s", plan.sql)
        cursor = manager.driver.query(plan.statement)
        result = manager.hydrator.hydrate(
            cursor,
            plan,
            limit=self.params.limit if plan.has_relations else None,
            offset=self.params.offset if plan.has_relations else None,
            single=single,
            read_only=self.params.read_only,
        )

        if not self.params.read_only:
            self.table.remember(*([] if result is None else [result] if single else result.values()))

        return result


def _text_filter(condition: str | tuple[Any, ...]) -> TextFilter:
    if isinstance(condition, str):
        return TextFilter(condition)

    fragment, *params = condition
    return TextFilter(fragment, tuple(params))
