"""Relational join mapping on SQLAlchemy Core.

sqla_joinmap maps table rows to records, discovers (or declares) the
relations between tables, and loads a record together with any number of
related records in one LEFT JOINed SELECT. Rows repeated by the joins are
folded back into one record tree; limit and offset count root records, not
rows. Start with a ``Manager`` over a ``SqlaDriver`` and a
``DatabaseDiscovery``, then call ``manager["post"].find().with_(...)``.
"""

from ._version import __version__, __version_tuple__
from .cache import Cache, MemoryCache
from .core import (
    FieldFilter,
    JoinNode,
    SelectBuilder,
    SelectPlan,
    TextFilter,
    joinmap_cache_clear,
    joinmap_cache_info,
    joinmap_select,
)
from .datastructures import frozendict
from .descriptor import Schema, TableDescriptor
from .discovery import DatabaseDiscovery, DiscoveryConfig, infer_many_to_many
from .driver import ColumnInfo, Driver, ResultCursor, RowCursor, SqlaDriver
from .exceptions import (
    EntityDefinitionError,
    FieldNotFoundError,
    JoinmapError,
    ReadOnlyRecordError,
    RecordNotFoundError,
    RelationNotFoundError,
    TableMismatchError,
    UnknownTableError,
)
from .finder import Finder
from .hydrator import ResultHydrator
from .manager import Manager, PendingQuery, QueryType
from .metadata import EntityMetadata
from .record import Record, RecordState, RecordStatus
from .relations import BelongsTo, HasMany, HasOne, ManyToMany, Relation, RelationKind, make_relation
from .sqlbuilder import PositionalParameters, QueryBuilder
from .table import BaseTable, Entity, Table
from .transactions import TransactionCounter


__all__ = (
    "BaseTable",
    "BelongsTo",
    "Cache",
    "ColumnInfo",
    "DatabaseDiscovery",
    "DiscoveryConfig",
    "Driver",
    "Entity",
    "EntityDefinitionError",
    "EntityMetadata",
    "FieldFilter",
    "FieldNotFoundError",
    "Finder",
    "HasMany",
    "HasOne",
    "JoinNode",
    "JoinmapError",
    "ManyToMany",
    "Manager",
    "MemoryCache",
    "PendingQuery",
    "PositionalParameters",
    "QueryBuilder",
    "QueryType",
    "ReadOnlyRecordError",
    "Record",
    "RecordNotFoundError",
    "RecordState",
    "RecordStatus",
    "Relation",
    "RelationKind",
    "RelationNotFoundError",
    "ResultCursor",
    "ResultHydrator",
    "RowCursor",
    "Schema",
    "SelectBuilder",
    "SelectPlan",
    "SqlaDriver",
    "Table",
    "TableDescriptor",
    "TableMismatchError",
    "TextFilter",
    "TransactionCounter",
    "UnknownTableError",
    "__version__",
    "__version_tuple__",
    "frozendict",
    "infer_many_to_many",
    "joinmap_cache_clear",
    "joinmap_cache_info",
    "joinmap_select",
    "make_relation",
)
