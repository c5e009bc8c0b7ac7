from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Final, Protocol

from .core import JoinNode, SelectPlan
from .descriptor import TableDescriptor
from .driver import Row, RowCursor
from .relations import Relation, is_single


logger = logging.getLogger(__name__)

_UNSET: Final = object()


class RecordHandle(Protocol):
    """How the hydrator creates records of one table and links them together."""

    descriptor: TableDescriptor

    def hydrate(self, values: Mapping[str, Any], *, read_only: bool = False, extra: Mapping[str, Any] | None = None) -> Any: ...

    def init_relation(self, record: Any, relation: Relation) -> None: ...

    def key_of(self, record: Any) -> Any: ...

    def values(self, record: Any) -> dict[str, Any]: ...

    def loaded_relation(self, record: Any, name: str) -> Any: ...

    def attach(self, record: Any, relation: Relation, key: Any, related: Any) -> None: ...


class ResultHydrator:
    """Rebuilds a tree of records from the flat rows of a joined SELECT.

    Rows are consumed one at a time. Consecutive rows with the same root key
    form one group; offset and limit count groups, not rows, because joins
    multiply the rows of a root. Rows of skipped groups are read and dropped;
    once ``limit`` groups are complete the cursor is closed without reading
    further. Within a group, a related key equal to the last one seen under
    the same parent is a duplicate caused by a sibling join and is not built
    again; its own children are still visited.

    Example:
        >>> hydrator = ResultHydrator(manager.get)
        >>> posts = hydrator.hydrate(cursor, plan, offset=10, limit=5)
        >>> list(posts)
        [11, 12, 13, 14, 15]
    """

    __slots__ = ("resolve",)

    def __init__(self, resolve: Callable[[str], RecordHandle]) -> None:
        self.resolve = resolve

    def hydrate(
        self,
        cursor: RowCursor,
        plan: SelectPlan,
        *,
        limit: int | None = None,
        offset: int | None = None,
        single: bool = False,
        read_only: bool = False,
    ) -> Any:
        """Hydrate *cursor*.

        Returns:
            Records keyed by primary key in order of first appearance (row
            number for keyless tables); in single mode the first record, or
            ``None`` when there were no rows.
        """
        if single:
            limit = 1

        root = plan.root
        handle = self.resolve(root.table)
        records: dict[Any, Any] = {}
        last_seen: dict[str, tuple[Any, Any, Any]] = {}
        current_key: Any = _UNSET
        record: Any = None
        group = -1
        emitted = 0
        skipped = False

        try:
            for number, row in enumerate(_rows(cursor)):
                key = number if root.pk_label is None else row.get(root.pk_label)
                if key != current_key:
                    current_key = key
                    group += 1
                    skipped = offset is not None and group < offset
                    if skipped:
                        continue
                    if limit is not None and emitted >= limit:
                        break

                    emitted += 1
                    last_seen = {}
                    record = records.get(key)
                    if record is None:
                        extra = {name: row.get(name) for name in plan.extra_fields}
                        record = handle.hydrate(root.values(row), read_only=read_only, extra=extra)
                        self._init_relations(handle, record, root)
                        records[key] = record
                elif skipped:
                    continue

                self._relate(row, handle, record, root, last_seen, read_only)
        finally:
            cursor.close()

        logger.debug("ORM: results: %d", len(records))
        if single:
            return next(iter(records.values()), None)

        return records

    def _relate(
        self,
        row: Row,
        handle: RecordHandle,
        parent: Any,
        node: JoinNode,
        last_seen: dict[str, tuple[Any, Any, Any]],
        read_only: bool,
    ) -> None:
        for child in node.children:
            key = _related_key(row, child)
            if key is None:
                continue

            assert child.relation is not None
            child_handle = self.resolve(child.table)
            seen = last_seen.get(child.path)
            if seen is not None and seen[0] is parent and seen[1] == key:
                related = seen[2]
            else:
                related = self._existing(handle, child_handle, parent, child, key)
                if related is None:
                    related = child_handle.hydrate(child.values(row), read_only=read_only)
                    self._init_relations(child_handle, related, child)
                    handle.attach(parent, child.relation, key, related)
                last_seen[child.path] = (parent, key, related)

            self._relate(row, child_handle, related, child, last_seen, read_only)

    def _existing(
        self, handle: RecordHandle, child_handle: RecordHandle, parent: Any, node: JoinNode, key: Any
    ) -> Any:
        """A related record already collected under *parent*.

        Sibling joins, and a parent whose rows are not contiguous, bring the
        same related row back; it is reused so its own children accumulate.
        """
        assert node.relation is not None
        loaded = handle.loaded_relation(parent, node.name)
        if not is_single(node.relation):
            return loaded.get(key)
        if loaded is None or _record_key(child_handle, loaded, node) != key:
            return None

        return loaded

    def _init_relations(self, handle: RecordHandle, record: Any, node: JoinNode) -> None:
        for child in node.children:
            assert child.relation is not None
            handle.init_relation(record, child.relation)


def _rows(cursor: RowCursor) -> Iterator[Row]:
    while (row := cursor.fetch_one()) is not None:
        yield row


def _related_key(row: Row, node: JoinNode) -> Any:
    """Key of the related row, ``None`` when the LEFT JOIN matched nothing."""
    if node.pk_label is not None:
        key = row.get(node.pk_label)
        return None if key == "" else key

    values = tuple(row.get(label) for label in node.labels.values())
    return None if all(value is None for value in values) else values


def _record_key(handle: RecordHandle, record: Any, node: JoinNode) -> Any:
    """Key of a hydrated record, in the form :func:`_related_key` reads from a row."""
    if node.pk_label is not None:
        return handle.key_of(record)

    values = handle.values(record)
    return tuple(values.get(name) for name in node.labels)
