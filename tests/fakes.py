from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import sqlalchemy as sa

from sqla_joinmap import ColumnInfo, QueryBuilder


class FakeCursor:
    """Row cursor over canned rows that remembers how far it was read."""

    def __init__(self, rows: Iterable[Mapping[str, Any]] = ()) -> None:
        self.rows = [dict(row) for row in rows]
        self.fetched = 0
        self.closed = False

    def fetch_one(self) -> dict[str, Any] | None:
        if self.closed or self.fetched >= len(self.rows):
            return None

        row = self.rows[self.fetched]
        self.fetched += 1
        return row

    def fetch_all(self) -> list[dict[str, Any]]:
        rows = []
        while (row := self.fetch_one()) is not None:
            rows.append(row)
        return rows

    def close(self) -> None:
        self.closed = True


class ScriptedDriver:
    """Driver answering queries from a script of result sets, in order.

    Every statement is recorded; writes get an empty result. Inserts hand
    out increasing ids starting at ``next_id``.
    """

    def __init__(self, *results: Iterable[Mapping[str, Any]], next_id: int = 100) -> None:
        self.results = [list(rows) for rows in results]
        self.statements: list[Any] = []
        self.calls: list[str] = []
        self.next_id = next_id
        self._last_id: Any = None
        self.tables: dict[str, list[ColumnInfo]] = {}

    def query(self, statement: sa.Executable | str, parameters: Mapping[str, Any] | None = None) -> FakeCursor:
        self.statements.append(statement)
        if isinstance(statement, sa.Insert):
            self._last_id = self.next_id
            self.next_id += 1
            return FakeCursor()
        if isinstance(statement, (sa.Update, sa.Delete)):
            return FakeCursor()

        return FakeCursor(self.results.pop(0) if self.results else ())

    def quote_identifier(self, name: str) -> str:
        return f'"{name}"'

    def last_insert_id(self) -> Any:
        return self._last_id

    def begin_transaction(self) -> None:
        self.calls.append("begin")

    def commit(self) -> None:
        self.calls.append("commit")

    def rollback(self) -> None:
        self.calls.append("rollback")

    def get_query_builder(self) -> QueryBuilder:
        return QueryBuilder()

    def get_table_names(self) -> list[str]:
        return list(self.tables)

    def describe_table(self, name: str) -> list[ColumnInfo]:
        return self.tables[name]

    def writes(self, kind: type[sa.Executable]) -> list[Any]:
        return [statement for statement in self.statements if isinstance(statement, kind)]
