from __future__ import annotations

from sqla_joinmap import (
    BelongsTo,
    DatabaseDiscovery,
    HasMany,
    HasOne,
    Manager,
    ManyToMany,
    MemoryCache,
    SqlaDriver,
)

from ..models import blog_schema


class TestLiveDiscovery:
    def test_matches_declared_schema(self, manager: Manager) -> None:
        assert manager.schema == blog_schema()

    def test_fields_in_column_order(self, manager: Manager) -> None:
        assert manager.schema["post"].fields == ("id", "title", "author_id")
        assert manager.schema["post_tag"].fields == ("post_id", "tag_id")

    def test_relations(self, manager: Manager) -> None:
        post = manager.schema["post"]
        assert post.relations["author"] == BelongsTo("author", "author", "author_id", "id")
        assert post.relations["comment"] == HasMany("comment", "comment", "id", "post_id")
        assert post.relations["tag"] == ManyToMany("tag", "tag", "id", "id", "post_tag", "post_id", "tag_id")

    def test_unique_reference(self, manager: Manager) -> None:
        assert manager.schema["author"].relations["profile"] == HasOne("profile", "profile", "id", "author_id")

    def test_cached(self, driver: SqlaDriver) -> None:
        cache = MemoryCache()
        schema = DatabaseDiscovery(driver, cache).get_table_descriptors()
        assert cache.get("orm.tables") is schema
        assert DatabaseDiscovery(driver, cache).get_table_descriptors() is schema

    def test_describe_table(self, driver: SqlaDriver) -> None:
        columns = {column.name: column for column in driver.describe_table("profile")}
        assert columns["id"].primary_key
        assert columns["author_id"].unique
        assert not columns["bio"].unique
