"""Basic sqla-joinmap usage examples.

Demonstrates discovery, eager loads, dotted paths, join conditions,
limit/offset over root records, saving and deleting.

NOTE: This file is illustrative. It won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from sqla_joinmap import DatabaseDiscovery, Manager, MemoryCache, Record, SqlaDriver

from .models import metadata


# ── 1. Set up once per connection ────────────────────────────────────

engine = sa.create_engine("sqlite:///:memory:")
logging.basicConfig(level=logging.DEBUG)


def setup(connection: sa.Connection) -> Manager:
    metadata.create_all(connection)
    driver = SqlaDriver(connection)

    # The discovered schema is kept in the cache for an hour
    return Manager(driver, DatabaseDiscovery(driver, MemoryCache()))


# ── 2. Simple loads ──────────────────────────────────────────────────


def get_post(manager: Manager, key: int) -> Record | None:
    return manager["post"].get(key)


def get_posts_with_comments(manager: Manager) -> dict[int, Record]:
    return manager["post"].find().with_("comment").all()


def get_posts_with_all(manager: Manager) -> dict[int, Record]:
    return manager["post"].find().with_("user", "comment", "tag").all()


# ── 3. Dotted / deep paths ──────────────────────────────────────────


def get_users_deep(manager: Manager) -> dict[int, Record]:
    return manager["user"].find().with_("post.comment", "post.tag").order_by("id").all()


# ── 4. Conditions ────────────────────────────────────────────────────


def get_posts_with_long_comments(manager: Manager) -> dict[int, Record]:
    return (
        manager["post"]
        .find()
        .with_("comment", conditions={"comment": ("length(comment.text) > ?", 20)})
        .where("post.title LIKE ?", "%sql%")
        .all()
    )


# ── 5. Limit and offset count posts, not joined rows ────────────────


def get_second_page(manager: Manager) -> dict[int, Record]:
    return manager["post"].find().with_("comment").order_by("id").limit(10).offset(10).all()


# ── 6. Saving ────────────────────────────────────────────────────────


def rename_post(manager: Manager, key: int, title: str) -> None:
    post = manager["post"][key]
    post["title"] = title
    post.save()  # UPDATE post SET title=? WHERE post.id = ?


def tag_post(manager: Manager, key: int, *tags: int) -> None:
    post = manager["post"][key]
    current = dict(post.get_relation("tag"))
    current.update((tag, manager["tag"][tag]) for tag in tags)
    post.set_relation("tag", current)
    post.save()  # inserts the missing post_tag rows


# ── 7. Deferred writes and transactions ─────────────────────────────


def archive(connection: sa.Connection, *keys: int) -> None:
    driver = SqlaDriver(connection)
    manager = Manager(driver, DatabaseDiscovery(driver), deferred=True)
    for key in keys:
        manager["post"].delete(key)  # comments and post_tag rows go too

    manager.commit()
