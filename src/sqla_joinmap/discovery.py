from __future__ import annotations

import logging
import sys
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Union


if sys.version_info >= (3, 11):
    from typing import TypedDict, Unpack
else:
    from typing_extensions import TypedDict, Unpack

from .cache import Cache
from .descriptor import Schema, TableDescriptor
from .driver import Driver
from .relations import BelongsTo, HasMany, HasOne, ManyToMany, Relation
from .tools import format_table_name, match_foreign_key, parse_table_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiscoveryConfig:
    table_format: str = field(default="%s")
    foreign_key: str = field(default="%s_id")
    cache_lifetime: int | None = field(default=3600)
    cache_key: str = field(default="orm.tables")


class DiscoveryConfigType(TypedDict, total=False):
    table_format: str
    foreign_key: str
    cache_lifetime: int | None
    cache_key: str


@dataclass(frozen=True, slots=True)
class _Link:
    join_table: str
    left: str
    right: str


@dataclass(frozen=True, slots=True)
class _Reference:
    referencing: str
    column: str
    referenced: str
    unique: bool


def infer_many_to_many(table_id: str, known: Collection[str]) -> tuple[str, str] | None:
    """Guess the two tables a join table links from its name.

    The name is split on ``_``. With two parts both must be known table ids;
    with more, the first (shortest) known prefix whose remainder is also
    known wins. This is a heuristic: ``order_item`` links ``order`` and
    ``item`` whether or not it really is a join table.

    Example:
        >>> infer_many_to_many("post_tag", {"post", "tag"})
        ('post', 'tag')
        >>> infer_many_to_many("user_group_member", {"user", "user_group", "group_member"})
        ('user', 'group_member')
    """
    parts = table_id.split("_")
    if len(parts) == 1:
        return None

    if len(parts) == 2:
        left, right = parts
        return (left, right) if left in known and right in known else None

    for k in range(1, len(parts)):
        left = "_".join(parts[:k])
        if left not in known:
            continue

        right = "_".join(parts[k:])
        if right in known:
            return left, right

    return None


class DatabaseDiscovery:
    """Builds a :class:`Schema` by inspecting a live database.

    Tables are listed through the driver, stripped of ``table_format`` to get
    their logical ids, and described column by column. Columns named after
    ``foreign_key`` (``author_id``) produce a ``BelongsTo`` on the referencing
    table and a ``HasOne``/``HasMany`` back on the referenced one. Join tables
    are recognised by name (see :func:`infer_many_to_many`).

    With a cache the result is stored under ``cache_key``; a cached schema is
    returned as-is, so schema changes need :meth:`refresh`.

    Example:
        >>> discovery = DatabaseDiscovery(driver, MemoryCache(), table_format="app_%s")
        >>> discovery.get_table_descriptors()["post"].relations["author"]
        BelongsTo(name='author', target='author', foreign_key='author_id', target_key='id')
    """

    __slots__ = ("_tables", "cache", "config", "driver")

    def __init__(self, driver: Driver, cache: Cache | None = None, **config: Unpack[DiscoveryConfigType]) -> None:
        self.driver = driver
        self.cache = cache
        self.config = DiscoveryConfig(**config)
        self._tables: Schema | None = None

    @property
    def table_format(self) -> str:
        return self.config.table_format

    @property
    def foreign_key(self) -> str:
        return self.config.foreign_key

    def get_table_descriptors(self) -> Schema:
        if self._tables is None:
            self._tables = self._load() or self._discover()

        return self._tables

    def get_table_descriptor(self, name: str) -> TableDescriptor:
        return self.get_table_descriptors()[name]

    def refresh(self) -> Schema:
        """Discard the memoised and cached schema and inspect the database again."""
        self._tables = self._discover()
        return self._tables

    def _load(self) -> Schema | None:
        if self.cache is None or not self.cache.has(self.config.cache_key):
            return None

        logger.debug("ORM: schema loaded from cache key %r", self.config.cache_key)
        return self.cache.get(self.config.cache_key)

    def _store(self, schema: Schema) -> None:
        if self.cache is not None:
            self.cache.store(self.config.cache_key, schema, self.config.cache_lifetime)

    def _discover(self) -> Schema:
        physical_names: dict[str, str] = {}
        for physical in self.driver.get_table_names():
            table_id = parse_table_name(self.config.table_format, physical)
            if table_id is None:
                logger.debug("ORM: skipping table %s, it does not match %r", physical, self.config.table_format)
                continue

            physical_names[table_id] = physical

        fields: dict[str, list[str]] = {table_id: [] for table_id in physical_names}
        primary_keys: dict[str, str | None] = dict.fromkeys(physical_names)
        found: list[Union[_Link, _Reference]] = []

        for table_id, physical in physical_names.items():
            if (pair := infer_many_to_many(table_id, physical_names)) is not None:
                found.append(_Link(table_id, *pair))

            for column in self.driver.describe_table(physical):
                fields[table_id].append(column.name)
                if column.primary_key:
                    if primary_keys[table_id] is None:
                        primary_keys[table_id] = column.name
                    else:
                        logger.debug(
                            "ORM: %s has a composite primary key, keeping %s",
                            table_id,
                            primary_keys[table_id],
                        )

                referenced = match_foreign_key(self.config.foreign_key, column.name)
                if referenced is not None and referenced in physical_names:
                    found.append(_Reference(table_id, column.name, referenced, column.unique))

        relations: dict[str, dict[str, Relation]] = {table_id: {} for table_id in physical_names}
        for item in found:
            self._relate(item, relations, primary_keys, physical_names)

        schema = Schema(
            TableDescriptor(
                name=table_id,
                primary_key=primary_keys[table_id],
                fields=tuple(fields[table_id]),
                relations=relations[table_id],
                table_name=physical,
            )
            for table_id, physical in physical_names.items()
        )
        logger.debug("ORM: discovered %d tables", len(schema))
        self._store(schema)

        return schema

    def _relate(
        self,
        item: _Link | _Reference,
        relations: dict[str, dict[str, Relation]],
        primary_keys: dict[str, str | None],
        physical_names: dict[str, str],
    ) -> None:
        # Applied in discovery order, so a later relation of the same name wins.
        match item:
            case _Reference(referencing=referencing, column=column, referenced=referenced, unique=unique):
                target_key = primary_keys[referenced]
                if target_key is None:
                    logger.debug("ORM: %s.%s references %s which has no primary key", referencing, column, referenced)
                    return

                has = HasOne if unique else HasMany
                relations[referencing][referenced] = BelongsTo(referenced, referenced, column, target_key)
                relations[referenced][referencing] = has(referencing, referencing, target_key, column)

            case _Link(join_table=join_table, left=left, right=right):
                left_key, right_key = primary_keys[left], primary_keys[right]
                if left_key is None or right_key is None:
                    return

                left_column = format_table_name(self.config.foreign_key, left)
                right_column = format_table_name(self.config.foreign_key, right)
                relations[left][right] = ManyToMany(
                    right, right, left_key, right_key, physical_names[join_table], left_column, right_column
                )
                relations[right][left] = ManyToMany(
                    left, left, right_key, left_key, physical_names[join_table], right_column, left_column
                )
