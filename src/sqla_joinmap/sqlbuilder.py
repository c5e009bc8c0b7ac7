"""SQL assembly primitives on top of SQLAlchemy Core.

Nothing here knows about relations; the join-aware SELECT lives in
:mod:`sqla_joinmap.core`. Tables are lightweight ``sa.table()`` clauses built
from descriptors, so no ``MetaData`` reflection is required.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from functools import lru_cache
from typing import Any

import sqlalchemy as sa

from .descriptor import TableDescriptor


@lru_cache(maxsize=256)
def table_clause(descriptor: TableDescriptor) -> sa.TableClause:
    """Lightweight table clause for *descriptor* (cached per descriptor)."""
    return sa.table(descriptor.table_name, *(sa.column(name) for name in descriptor.fields))


class PositionalParameters:
    """Allocates numbered bind parameters for ``?`` placeholders.

    One instance is shared by all fragments of a statement, so the numbering
    follows allocation order across WHERE, HAVING and join conditions.

    Example:
        >>> params = PositionalParameters()
        >>> params.fragment("name = ? AND age > ?", ("joe", 3)).text
        'name = :p0 AND age > :p1'
        >>> params.values
        {'p0': 'joe', 'p1': 3}
    """

    __slots__ = ("_prefix", "_values")

    def __init__(self, prefix: str = "p") -> None:
        self._prefix = prefix
        self._values: dict[str, Any] = {}

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def allocate(self, value: Any) -> sa.BindParameter[Any]:
        name = f"{self._prefix}{len(self._values)}"
        expanding = _is_sequence(value)
        if expanding:
            value = list(value)

        self._values[name] = value
        return sa.bindparam(name, value, expanding=expanding)

    def fragment(self, sql: str, params: Sequence[Any] = ()) -> sa.TextClause:
        """Turn a ``?`` fragment into a text clause with bound parameters."""
        pieces = sql.split("?")
        if len(pieces) - 1 != len(params):
            raise ValueError(
                f"Fragment {sql!r} has {len(pieces) - 1} placeholders, got {len(params)} parameters"
            )

        binds = [self.allocate(value) for value in params]
        text = pieces[0] + "".join(f":{bind.key}{piece}" for bind, piece in zip(binds, pieces[1:]))

        return sa.text(text).bindparams(*binds)


class QueryBuilder:
    """Statement factory handed out by a driver.

    ``returning`` tells whether the dialect supports ``INSERT .. RETURNING``;
    when it does not, the driver falls back to the cursor's ``lastrowid``.
    """

    __slots__ = ("returning",)

    def __init__(self, *, returning: bool = True) -> None:
        self.returning = returning

    def select(self, *columns: Any) -> sa.Select[Any]:
        return sa.select(*columns)

    def insert(self, descriptor: TableDescriptor, values: Mapping[str, Any]) -> sa.Insert:
        table = table_clause(descriptor)
        statement = sa.insert(table).values(dict(values))
        if self.returning and descriptor.primary_key is not None:
            statement = statement.returning(table.c[descriptor.primary_key])

        return statement

    def update(
        self, descriptor: TableDescriptor, values: Mapping[str, Any], where: sa.ColumnElement[bool]
    ) -> sa.Update:
        return sa.update(table_clause(descriptor)).values(dict(values)).where(where)

    def delete(self, descriptor: TableDescriptor, where: sa.ColumnElement[bool]) -> sa.Delete:
        return sa.delete(table_clause(descriptor)).where(where)

    def column(self, descriptor: TableDescriptor, name: str) -> sa.ColumnClause[Any]:
        return table_clause(descriptor).c[name]

    def eq(self, column: sa.ColumnElement[Any], value: Any) -> sa.ColumnElement[bool]:
        return column.is_(None) if value is None else column == value

    def in_(self, column: sa.ColumnElement[Any], values: Iterable[Any] | sa.Select[Any]) -> sa.ColumnElement[bool]:
        if isinstance(values, sa.Select):
            return column.in_(values)

        return column.in_(list(values))

    def and_(self, *clauses: sa.ColumnElement[bool]) -> sa.ColumnElement[bool]:
        return clauses[0] if len(clauses) == 1 else sa.and_(*clauses)

    def match_keys(self, column: sa.ColumnElement[Any], keys: Sequence[Any]) -> sa.ColumnElement[bool]:
        """``column = key`` for a single key, ``column IN (...)`` for several."""
        return self.eq(column, keys[0]) if len(keys) == 1 else self.in_(column, keys)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))
