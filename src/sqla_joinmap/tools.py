from __future__ import annotations

import re
from collections.abc import Collection, Iterable, Sequence
from functools import lru_cache


_PLACEHOLDER = "%s"
_AS_RE = re.compile(r"\s+as\s+", re.IGNORECASE)
_ALIASED_RE = re.compile(r'(.*\S)\s+as\s+([\w"`]+)', re.IGNORECASE | re.DOTALL)


@lru_cache
def _format_pattern(fmt: str, capture: str) -> re.Pattern[str]:
    """Compile a ``%s`` format string into an anchored pattern (cached)."""
    if fmt.count(_PLACEHOLDER) != 1:
        raise ValueError(f"Format must contain exactly one '%s': {fmt!r}")

    prefix, suffix = fmt.split(_PLACEHOLDER)
    return re.compile(f"{re.escape(prefix)}({capture}){re.escape(suffix)}")


def format_table_name(fmt: str, table_id: str) -> str:
    """Apply a table name format such as ``"app_%s"`` to a logical table id."""
    return fmt.replace(_PLACEHOLDER, table_id, 1)


def parse_table_name(fmt: str, physical: str) -> str | None:
    """Recover the logical table id from a physical name.

    Returns ``None`` when *physical* does not follow *fmt*.

    Example:
        >>> parse_table_name("app_%s", "app_post")
        'post'
    """
    match = _format_pattern(fmt, r"\S+?").fullmatch(physical)
    return match.group(1) if match else None


def match_foreign_key(fmt: str, column: str) -> str | None:
    """Return the table id a foreign-key-shaped column name refers to.

    Example:
        >>> match_foreign_key("%s_id", "author_id")
        'author'
        >>> match_foreign_key("%s_id", "id") is None
        True
    """
    match = _format_pattern(fmt, r".+?").fullmatch(column)
    return match.group(1) if match else None


def expand_paths(paths: Iterable[str]) -> tuple[str, ...]:
    """Expand dot-paths into every non-empty prefix, first-seen order, no duplicates.

    Example:
        >>> expand_paths(["post.comment", "tag", "post"])
        ('post', 'post.comment', 'tag')
    """
    seen: dict[str, None] = {}
    for path in paths:
        parts = path.split(".")
        for depth in range(1, len(parts) + 1):
            seen.setdefault(".".join(parts[:depth]), None)

    return tuple(seen)


def column_label(alias: str, column: str) -> str:
    """Result-set label of *column* selected through table alias *alias*."""
    return f"{alias}_{column}"


def unique_alias(alias: str, used: Collection[str]) -> str:
    """Return *alias*, suffixed with ``_alias`` (and a counter) if already taken."""
    if alias not in used:
        return alias

    candidate = f"{alias}_alias"
    counter = 1
    while candidate in used:
        counter += 1
        candidate = f"{alias}_alias{counter}"

    return candidate


def is_expression(column: str) -> bool:
    """Raw SQL expressions (``count(*) as n``) are passed through unqualified."""
    return "(" in column or _AS_RE.search(column) is not None


def split_alias(column: str) -> tuple[str, str | None]:
    """Split ``"<expression> AS <alias>"`` into its parts.

    Example:
        >>> split_alias("count(*) as n")
        ('count(*)', 'n')
        >>> split_alias("title")
        ('title', None)
    """
    match = _ALIASED_RE.fullmatch(column.strip())
    if match is None:
        return column, None

    return match.group(1), match.group(2).strip('"`')


def prefixed(paths: Sequence[str], prefix: str) -> tuple[str, ...]:
    """Select the paths below *prefix* and strip it.

    Example:
        >>> prefixed(("post", "post.comment", "post.comment.like", "tag"), "post")
        ('comment', 'comment.like')
    """
    head = f"{prefix}."
    return tuple(path[len(head):] for path in paths if path.startswith(head))
