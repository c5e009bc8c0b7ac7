from __future__ import annotations

import enum
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa

from .descriptor import Schema, TableDescriptor
from .discovery import DatabaseDiscovery
from .driver import Driver
from .exceptions import UnknownTableError
from .hydrator import ResultHydrator
from .metadata import EntityMetadata
from .sqlbuilder import QueryBuilder
from .table import BaseTable, Entity, Table
from .transactions import TransactionCounter


class QueryType(enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class PendingQuery:
    """A write statement held back until :meth:`Manager.commit`."""

    type: QueryType
    statement: sa.Executable

    @classmethod
    def of(cls, statement: sa.Executable) -> PendingQuery:
        match statement:
            case sa.Insert():
                kind = QueryType.INSERT
            case sa.Update():
                kind = QueryType.UPDATE
            case sa.Delete():
                kind = QueryType.DELETE
            case _:
                raise TypeError(f"Cannot queue {type(statement).__name__}, only INSERT, UPDATE and DELETE")

        return cls(kind, statement)

    def execute(self, driver: Driver) -> None:
        driver.query(self.statement).close()


class Manager:
    """Entry point: owns the driver, the schema and one handle per table.

    The schema comes from a :class:`DatabaseDiscovery` (inspected lazily), a
    ready :class:`Schema`/mapping of descriptors, or is built up with
    :meth:`register`. With ``deferred=True`` updates, deletes and link rows
    are queued and only run on :meth:`commit`; inserts of new records always
    run immediately because their generated key is needed.

    Example:
        >>> manager = Manager(SqlaDriver(connection), DatabaseDiscovery(driver))
        >>> post = manager["post"].find().with_("comment").get(1)
        >>> post["title"] = "Edited"
        >>> post.save()
    """

    def __init__(
        self,
        driver: Driver,
        source: DatabaseDiscovery | Schema | Mapping[str, TableDescriptor] | None = None,
        *,
        logger: logging.Logger | None = None,
        deferred: bool = False,
    ) -> None:
        self.driver = driver
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.deferred = deferred
        self.pending: list[PendingQuery] = []
        self.saving: set[int] = set()
        self.transactions = TransactionCounter(driver)
        self.hydrator = ResultHydrator(self.get)
        self._builder: QueryBuilder | None = None
        self._discovery = source if isinstance(source, DatabaseDiscovery) else None
        self._schema: Schema | None = None
        if source is not None and self._discovery is None:
            self._schema = source if isinstance(source, Schema) else Schema(source)
        self._tables: dict[str, BaseTable[Any]] = {}

    def __repr__(self) -> str:
        return f"<Manager tables={list(self.schema)!r} deferred={self.deferred}>"

    @property
    def schema(self) -> Schema:
        if self._schema is None:
            self._schema = self._discovery.get_table_descriptors() if self._discovery else Schema()

        return self._schema

    @property
    def builder(self) -> QueryBuilder:
        if self._builder is None:
            self._builder = self.driver.get_query_builder()

        return self._builder

    def log(self, message: str, *args: Any) -> None:
        self.logger.debug("ORM: " + message, *args)

    def get(self, name: str) -> BaseTable[Any]:
        """The handle of table *name*; raises :class:`UnknownTableError`."""
        table = self._tables.get(name)
        if table is None:
            if name not in self.schema:
                raise UnknownTableError(name)

            table = self._tables[name] = Table(self, self.schema[name])

        return table

    def __getitem__(self, name: str) -> BaseTable[Any]:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tables or name in self.schema

    def register(self, name: str, metadata: EntityMetadata[Any]) -> Entity[Any]:
        """Add an entity handle for *metadata* under *name*."""
        entity = Entity(self, metadata, name)
        self._schema = self.schema.register(entity.descriptor)
        self._tables[name] = entity
        self.log("Registered %s as %s", metadata.cls.__name__, name)
        return entity

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Nested-safe transaction; rolls back and re-raises on error."""
        with self.transactions():
            yield

    def execute(self, statement: sa.Executable, *, defer: bool = True) -> None:
        """Run a write statement, or queue it when the manager is deferred."""
        if self.deferred and defer:
            self.pending.append(PendingQuery.of(statement))
            self.log("Deferred %s", statement)
            return

        self.driver.query(statement).close()

    def commit(self) -> None:
        """Run the queued statements in order, inside one transaction.

        On error the transaction is rolled back, the rest of the queue is
        dropped and the error is re-raised.
        """
        pending, self.pending = self.pending, []
        if not pending:
            return

        self.log("Flushing %d queries", len(pending))
        with self.transaction():
            for query in pending:
                query.execute(self.driver)

    def discard(self) -> None:
        self.log("Discarding %d queries", len(self.pending))
        self.pending.clear()
