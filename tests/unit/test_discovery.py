from __future__ import annotations

from typing import Any

import pytest

from sqla_joinmap import (
    BelongsTo,
    ColumnInfo,
    DatabaseDiscovery,
    HasMany,
    HasOne,
    ManyToMany,
    MemoryCache,
    infer_many_to_many,
)


class FakeDriver:
    """Only the introspection part of a driver."""

    def __init__(self, tables: dict[str, list[ColumnInfo]]) -> None:
        self.tables = tables
        self.listed = 0

    def get_table_names(self) -> list[str]:
        self.listed += 1
        return list(self.tables)

    def describe_table(self, name: str) -> list[ColumnInfo]:
        return self.tables[name]


def blog_tables(prefix: str = "") -> dict[str, list[ColumnInfo]]:
    return {
        f"{prefix}author": [ColumnInfo("id", primary_key=True), ColumnInfo("name")],
        f"{prefix}profile": [
            ColumnInfo("id", primary_key=True),
            ColumnInfo("bio"),
            ColumnInfo("author_id", unique=True),
        ],
        f"{prefix}post": [ColumnInfo("id", primary_key=True), ColumnInfo("title"), ColumnInfo("author_id")],
        f"{prefix}tag": [ColumnInfo("id", primary_key=True), ColumnInfo("name")],
        f"{prefix}post_tag": [
            ColumnInfo("post_id", primary_key=True),
            ColumnInfo("tag_id", primary_key=True),
        ],
    }


def discover(tables: dict[str, list[ColumnInfo]], **config: Any) -> DatabaseDiscovery:
    return DatabaseDiscovery(FakeDriver(tables), **config)  # type: ignore[arg-type]


class TestInferManyToMany:
    def test_two_parts(self) -> None:
        assert infer_many_to_many("post_tag", {"post", "tag"}) == ("post", "tag")

    def test_two_parts_one_unknown(self) -> None:
        assert infer_many_to_many("post_tag", {"post"}) is None

    def test_single_part(self) -> None:
        assert infer_many_to_many("post", {"post"}) is None

    def test_lowest_split_wins(self) -> None:
        known = {"many", "many_to", "to_many", "many_to_many"}
        assert infer_many_to_many("many_to_many", known) == ("many", "to_many")

    def test_later_split(self) -> None:
        assert infer_many_to_many("user_group_member", {"user_group", "member"}) == ("user_group", "member")

    def test_no_split_matches(self) -> None:
        known = {"many", "many_to_many", "many_to_many_to"}
        assert infer_many_to_many("many_to_many", known) is None


class TestDiscovery:
    def test_tables_and_fields(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        assert set(schema) == {"author", "profile", "post", "tag", "post_tag"}
        assert schema["post"].fields == ("id", "title", "author_id")
        assert schema["post"].primary_key == "id"

    def test_belongs_to_and_has_many(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        assert schema["post"].relations["author"] == BelongsTo("author", "author", "author_id", "id")
        assert schema["author"].relations["post"] == HasMany("post", "post", "id", "author_id")

    def test_unique_reference_is_has_one(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        assert schema["author"].relations["profile"] == HasOne("profile", "profile", "id", "author_id")
        assert schema["profile"].relations["author"] == BelongsTo("author", "author", "author_id", "id")

    def test_many_to_many_both_sides(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        assert schema["post"].relations["tag"] == ManyToMany("tag", "tag", "id", "id", "post_tag", "post_id", "tag_id")
        assert schema["tag"].relations["post"] == ManyToMany("post", "post", "id", "id", "post_tag", "tag_id", "post_id")

    def test_join_table_keeps_its_own_relations(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        assert schema["post_tag"].primary_key == "post_id"
        assert set(schema["post_tag"].relations) == {"post", "tag"}
        assert schema["post"].relations["post_tag"] == HasMany("post_tag", "post_tag", "id", "post_id")

    def test_every_relation_has_an_inverse(self) -> None:
        schema = discover(blog_tables()).get_table_descriptors()
        for name, descriptor in schema.items():
            for relation in descriptor.relations.values():
                assert name in schema[relation.target].relations

    def test_table_format(self) -> None:
        tables = blog_tables("app_")
        tables["other_log"] = [ColumnInfo("id", primary_key=True)]
        schema = discover(tables, table_format="app_%s").get_table_descriptors()
        assert "other_log" not in schema
        assert schema["post"].table_name == "app_post"
        assert schema["post"].relations["tag"].join_table == "app_post_tag"

    def test_foreign_key_format(self) -> None:
        tables = {
            "author": [ColumnInfo("id", primary_key=True)],
            "post": [ColumnInfo("id", primary_key=True), ColumnInfo("fk_author")],
        }
        schema = discover(tables, foreign_key="fk_%s").get_table_descriptors()
        assert schema["post"].relations["author"] == BelongsTo("author", "author", "fk_author", "id")

    def test_reference_to_unknown_table_ignored(self) -> None:
        tables = {"post": [ColumnInfo("id", primary_key=True), ColumnInfo("editor_id")]}
        assert discover(tables).get_table_descriptor("post").relations == {}

    def test_reference_to_keyless_table_ignored(self) -> None:
        tables = {
            "log": [ColumnInfo("message")],
            "entry": [ColumnInfo("id", primary_key=True), ColumnInfo("log_id")],
        }
        schema = discover(tables).get_table_descriptors()
        assert schema["log"].primary_key is None
        assert schema["entry"].relations == {}

    def test_memoised(self) -> None:
        discovery = discover(blog_tables())
        assert discovery.get_table_descriptors() is discovery.get_table_descriptors()
        assert discovery.driver.listed == 1  # type: ignore[attr-defined]

    def test_refresh(self) -> None:
        discovery = discover(blog_tables())
        discovery.get_table_descriptors()
        discovery.driver.tables["comment"] = [ColumnInfo("id", primary_key=True), ColumnInfo("post_id")]  # type: ignore[attr-defined]
        assert "comment" in discovery.refresh()
        assert "comment" in discovery.get_table_descriptors()["post"].relations


class TestDiscoveryCache:
    def test_stored_and_reused(self) -> None:
        cache = MemoryCache()
        first = DatabaseDiscovery(FakeDriver(blog_tables()), cache)  # type: ignore[arg-type]
        schema = first.get_table_descriptors()
        assert cache.get("orm.tables") is schema

        driver = FakeDriver(blog_tables())
        second = DatabaseDiscovery(driver, cache)  # type: ignore[arg-type]
        assert second.get_table_descriptors() == schema
        assert driver.listed == 0

    def test_custom_key(self) -> None:
        cache = MemoryCache()
        DatabaseDiscovery(FakeDriver(blog_tables()), cache, cache_key="app.schema").get_table_descriptors()  # type: ignore[arg-type]
        assert cache.has("app.schema")
        assert not cache.has("orm.tables")

    def test_expired(self) -> None:
        now = [0.0]
        cache = MemoryCache(clock=lambda: now[0])
        DatabaseDiscovery(FakeDriver(blog_tables()), cache, cache_lifetime=10).get_table_descriptors()  # type: ignore[arg-type]
        now[0] = 11.0
        assert not cache.has("orm.tables")

    def test_invalidate(self) -> None:
        cache = MemoryCache()
        cache.store("a", 1)
        cache.store("b", 2)
        cache.invalidate("a")
        assert not cache.has("a")
        cache.invalidate()
        assert not cache.has("b")


@pytest.mark.parametrize(
    ("column", "unique", "expected"),
    [
        (ColumnInfo("author_id", unique=True), True, HasOne),
        (ColumnInfo("author_id"), False, HasMany),
    ],
)
def test_inverse_kind(column: ColumnInfo, unique: bool, expected: type) -> None:
    tables = {
        "author": [ColumnInfo("id", primary_key=True)],
        "post": [ColumnInfo("id", primary_key=True), column],
    }
    relation = discover(tables).get_table_descriptor("author").relations["post"]
    assert isinstance(relation, expected)
    assert column.unique is unique
