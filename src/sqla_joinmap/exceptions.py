"""Exceptions raised by sqla_joinmap.

Every error derives from :class:`JoinmapError` and from the builtin exception
closest to its meaning, so ``except LookupError`` keeps working for lookups.
Driver errors are never wrapped; they reach the caller as raised by SQLAlchemy.
"""

from __future__ import annotations


class JoinmapError(Exception):
    """Base class of all errors raised by this package."""


class EntityDefinitionError(JoinmapError, TypeError):
    """Table or entity metadata is inconsistent (raised when it is built)."""


class UnknownTableError(JoinmapError, LookupError):
    """No table or entity is registered under the requested id."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Table does not exist: {name}")
        self.name = name


class RelationNotFoundError(JoinmapError, LookupError):
    """A relation name (or one segment of a dot-path) is not defined."""

    def __init__(self, relation: str, table: str) -> None:
        super().__init__(f"No relation '{relation}' on {table}")
        self.relation = relation
        self.table = table


class RecordNotFoundError(JoinmapError, LookupError):
    """No record exists for the requested primary key."""

    def __init__(self, table: str, key: object) -> None:
        super().__init__(f"Record does not exist in {table}: {key!r}")
        self.table = table
        self.key = key


class FieldNotFoundError(JoinmapError, KeyError):
    """A record was asked for a field its table does not have."""

    def __init__(self, field: str, table: str) -> None:
        super().__init__(f"Key '{field}' is not set on {table}")
        self.field = field
        self.table = table

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class TableMismatchError(JoinmapError, ValueError):
    """A record was handed to a table handle that does not own it."""


class ReadOnlyRecordError(JoinmapError):
    """A record loaded in read-only mode was about to be written."""
