"""Mapping plain classes with ``EntityMetadata``.

NOTE: This file is illustrative. It won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

from sqla_joinmap import EntityMetadata, HasMany, Manager, ManyToMany, SqlaDriver


class User:
    def __init__(self) -> None:
        self.id: int | None = None
        self.name = ""
        self.posts: dict[int, Post] = {}


class Post:
    def __init__(self) -> None:
        self.id: int | None = None
        self.user_id: int | None = None
        self._title = ""
        self.tags: dict[int, Tag] = {}

    def get_title(self) -> str:
        return self._title

    def set_title(self, title: str) -> None:
        self._title = title.strip()


class Tag:
    def __init__(self) -> None:
        self.id: int | None = None
        self.name = ""


def register(driver: SqlaDriver) -> Manager:
    manager = Manager(driver)

    users = EntityMetadata(User, "user")
    users.add_field("id", primary_key=True)
    users.add_field("name")
    users.add_relation("posts", HasMany("posts", "posts", "id", "user_id"))

    posts = EntityMetadata(Post, "post")
    posts.add_field("id", primary_key=True)
    posts.add_field("user_id")
    posts.add_field("title", getter=True, setter=True)
    posts.add_relation(
        "tags",
        ManyToMany(
            "tags",
            "tags",
            "id",
            "id",
            join_table="post_tag",
            join_table_foreign_key="post_id",
            join_table_target_key="tag_id",
        ),
    )

    tags = EntityMetadata(Tag, "tag")
    tags.add_field("id", primary_key=True)
    tags.add_field("name")

    manager.register("users", users)
    manager.register("posts", posts)
    manager.register("tags", tags)
    return manager


def user_with_tagged_posts(manager: Manager, key: int) -> User | None:
    return manager["users"].find().with_("posts.tags").get(key)


def retitle(manager: Manager, key: int, title: str) -> None:
    post = manager["posts"][key]
    post.set_title(title)
    manager["posts"].save(post)
