from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import sqlalchemy as sa

from .sqlbuilder import QueryBuilder


logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    name: str
    primary_key: bool = False
    unique: bool = False


@runtime_checkable
class RowCursor(Protocol):
    """Forward-only, single-consumer row stream."""

    def fetch_one(self) -> Row | None: ...

    def fetch_all(self) -> list[Row]: ...

    def close(self) -> None: ...


@runtime_checkable
class Driver(Protocol):
    """What the ORM needs from a database connection.

    Transactions at this level are not reentrant; nesting is handled by
    :class:`~sqla_joinmap.transactions.TransactionCounter`.
    """

    def query(self, statement: sa.Executable | str, parameters: Mapping[str, Any] | None = None) -> RowCursor: ...

    def quote_identifier(self, name: str) -> str: ...

    def last_insert_id(self) -> Any: ...

    def begin_transaction(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def get_query_builder(self) -> QueryBuilder: ...

    def get_table_names(self) -> list[str]: ...

    def describe_table(self, name: str) -> list[ColumnInfo]: ...


class ResultCursor:
    """:class:`RowCursor` over a SQLAlchemy ``CursorResult``; rows are plain dicts."""

    __slots__ = ("_result", "_rows")

    def __init__(self, result: sa.CursorResult[Any], rows: Iterator[Mapping[str, Any]] | None = None) -> None:
        self._result = result
        if rows is None:
            rows = iter(result.mappings()) if result.returns_rows else iter(())
        self._rows = rows

    def __iter__(self) -> Iterator[Row]:
        for row in self._rows:
            yield dict(row)

    def fetch_one(self) -> Row | None:
        row = next(self._rows, None)
        return None if row is None else dict(row)

    def fetch_all(self) -> list[Row]:
        return list(self)

    def close(self) -> None:
        self._rows = iter(())
        self._result.close()


class SqlaDriver:
    """:class:`Driver` bound to one SQLAlchemy ``Connection``.

    Example:
        >>> engine = sa.create_engine("sqlite://")
        >>> with engine.connect() as connection:
        ...     driver = SqlaDriver(connection)
        ...     driver.query("SELECT 1 AS one").fetch_one()
        {'one': 1}
    """

    __slots__ = ("_last_insert_id", "_transaction", "connection")

    def __init__(self, connection: sa.Connection) -> None:
        self.connection = connection
        self._transaction: sa.Transaction | None = None
        self._last_insert_id: Any = None

    @property
    def dialect(self) -> sa.Dialect:
        return self.connection.dialect

    def query(self, statement: sa.Executable | str, parameters: Mapping[str, Any] | None = None) -> ResultCursor:
        if isinstance(statement, str):
            statement = sa.text(statement)

        logger.debug("%s %r", statement, parameters or {})
        result = self.connection.execute(statement, dict(parameters) if parameters else None)

        if isinstance(statement, sa.Insert):
            if result.returns_rows:
                self._last_insert_id = result.scalar()
                return ResultCursor(result, iter(()))

            self._last_insert_id = result.lastrowid

        return ResultCursor(result)

    def quote_identifier(self, name: str) -> str:
        return self.dialect.identifier_preparer.quote(name)

    def last_insert_id(self) -> Any:
        return self._last_insert_id

    def begin_transaction(self) -> None:
        # SQLAlchemy 2.x autobegins on first execute; adopt that transaction.
        if self.connection.in_transaction():
            self._transaction = self.connection.get_transaction()
        else:
            self._transaction = self.connection.begin()

    def commit(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is not None:
            transaction.commit()
        else:
            self.connection.commit()

    def rollback(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is not None:
            transaction.rollback()
        else:
            self.connection.rollback()

    def get_query_builder(self) -> QueryBuilder:
        return QueryBuilder(returning=self.dialect.insert_returning)

    def get_table_names(self) -> list[str]:
        return sa.inspect(self.connection).get_table_names()

    def describe_table(self, name: str) -> list[ColumnInfo]:
        inspector = sa.inspect(self.connection)
        primary = inspector.get_pk_constraint(name).get("constrained_columns") or []
        unique = _unique_columns(
            *(uc["column_names"] for uc in inspector.get_unique_constraints(name)),
            *(ix["column_names"] for ix in inspector.get_indexes(name) if ix.get("unique")),
        )

        return [
            ColumnInfo(
                name=column["name"],
                primary_key=column["name"] in primary,
                unique=column["name"] in unique,
            )
            for column in inspector.get_columns(name)
        ]


def _unique_columns(*groups: Sequence[str | None]) -> set[str]:
    """Columns that are unique on their own (single-column constraints only)."""
    return {group[0] for group in groups if len(group) == 1 and group[0] is not None}
