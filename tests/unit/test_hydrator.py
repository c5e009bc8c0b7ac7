from __future__ import annotations

from typing import Any

from sqla_joinmap import Manager, Record, SelectPlan, TableDescriptor, joinmap_select

from ..fakes import FakeCursor, ScriptedDriver
from ..models import blog_schema


def post_row(post: int, comment: int | None = None, author: int = 1) -> dict[str, Any]:
    return {
        "post_id": post,
        "post_title": f"Post {post}",
        "post_author_id": author,
        "comment_id": comment,
        "comment_text": None if comment is None else f"Comment {comment}",
        "comment_post_id": None if comment is None else post,
    }


def plan_for(table: str, *relations: str, **params: Any) -> SelectPlan:
    return joinmap_select(schema=blog_schema(), table=table, relations=relations, **params)


def joined_row(plan: SelectPlan, tables: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Flat row of *plan* holding the given values per relation path ('' for the root)."""
    row: dict[str, Any] = {}
    for node in plan.root.walk():
        values = tables.get(node.path, {})
        row.update({label: values.get(name) for name, label in node.labels.items()})

    return row


def hydrate(cursor: FakeCursor, plan: SelectPlan, **options: Any) -> Any:
    manager = Manager(ScriptedDriver(), blog_schema())
    return manager.hydrator.hydrate(cursor, plan, **options)


class TestHasMany:
    def test_rows_folded_into_one_record(self) -> None:
        posts = hydrate(FakeCursor([post_row(1, 1), post_row(1, 2)]), plan_for("post", "comment"))
        assert list(posts) == [1]
        post = posts[1]
        assert isinstance(post, Record)
        assert post.to_dict() == {"id": 1, "title": "Post 1", "author_id": 1}
        assert list(post.get_relation("comment")) == [1, 2]
        assert post.get_relation("comment")[2]["text"] == "Comment 2"

    def test_unmatched_join_is_empty(self) -> None:
        posts = hydrate(FakeCursor([post_row(1)]), plan_for("post", "comment"))
        assert posts[1].is_loaded("comment")
        assert posts[1].get_relation("comment") == {}

    def test_order_of_first_appearance(self) -> None:
        rows = [post_row(3, 5), post_row(1, 1), post_row(2)]
        assert list(hydrate(FakeCursor(rows), plan_for("post", "comment"))) == [3, 1, 2]


class TestOffsetLimitOverGroups:
    rows = [
        post_row(1, 1),
        post_row(1, 2),
        post_row(1, 3),
        post_row(2, 4),
        post_row(3, 5),
        post_row(3, 6),
        post_row(4, 7),
        post_row(4, 8),
        post_row(4, 9),
        post_row(5, 10),
    ]

    def test_window(self) -> None:
        posts = hydrate(FakeCursor(self.rows), plan_for("post", "comment"), offset=2, limit=3)
        assert list(posts) == [3, 4, 5]
        assert list(posts[3].get_relation("comment")) == [5, 6]
        assert list(posts[4].get_relation("comment")) == [7, 8, 9]
        assert list(posts[5].get_relation("comment")) == [10]

    def test_limit_stops_reading(self) -> None:
        cursor = FakeCursor(self.rows)
        posts = hydrate(cursor, plan_for("post", "comment"), limit=2)
        assert list(posts) == [1, 2]
        # The first row of the third group is read to see the group end.
        assert cursor.fetched == 5
        assert cursor.closed

    def test_offset_past_end(self) -> None:
        assert hydrate(FakeCursor(self.rows), plan_for("post", "comment"), offset=10) == {}

    def test_zero_limit(self) -> None:
        assert hydrate(FakeCursor(self.rows), plan_for("post", "comment"), limit=0) == {}


class TestSingle:
    def test_first_record(self) -> None:
        cursor = FakeCursor([post_row(1, 1), post_row(1, 2), post_row(2, 3)])
        post = hydrate(cursor, plan_for("post", "comment"), single=True)
        assert post["id"] == 1
        assert len(post.get_relation("comment")) == 2
        assert cursor.closed

    def test_not_found(self) -> None:
        cursor = FakeCursor([])
        assert hydrate(cursor, plan_for("post", "comment"), single=True) is None
        assert cursor.closed

    def test_not_found_collection(self) -> None:
        assert hydrate(FakeCursor([]), plan_for("post")) == {}


class TestDeepAndSiblings:
    def test_sibling_cross_product(self) -> None:
        rows = [
            {"post_id": 1, "comment_id": c, "comment_post_id": 1, "tag_id": t, "tag_name": f"t{t}"}
            for c in (1, 2)
            for t in (1, 2)
        ]
        post = hydrate(FakeCursor(rows), plan_for("post", "comment", "tag"), single=True)
        assert list(post.get_relation("comment")) == [1, 2]
        assert list(post.get_relation("tag")) == [1, 2]

    def test_related_records_are_shared_within_parent(self) -> None:
        rows = [
            {"post_id": 1, "comment_id": c, "tag_id": t}
            for c in (1, 2)
            for t in (1, 2)
        ]
        post = hydrate(FakeCursor(rows), plan_for("post", "comment", "tag"), single=True)
        tags = post.get_relation("tag")
        assert len({id(tag) for tag in tags.values()}) == 2

    def test_nested_paths(self) -> None:
        rows = [
            {"author_id": 1, "author_name": "alice", "post_id": 1, "post_comment_id": 1},
            {"author_id": 1, "author_name": "alice", "post_id": 1, "post_comment_id": 2},
            {"author_id": 1, "author_name": "alice", "post_id": 2, "post_comment_id": 3},
            {"author_id": 1, "author_name": "alice", "post_id": 3, "post_comment_id": None},
            {"author_id": 2, "author_name": "bob", "post_id": None, "post_comment_id": None},
        ]
        authors = hydrate(FakeCursor(rows), plan_for("author", "post.comment"))
        posts = authors[1].get_relation("post")
        assert list(posts) == [1, 2, 3]
        assert list(posts[1].get_relation("comment")) == [1, 2]
        assert list(posts[2].get_relation("comment")) == [3]
        assert posts[3].get_relation("comment") == {}
        assert authors[2].get_relation("post") == {}

    def test_belongs_to_is_single(self) -> None:
        rows = [
            {"post_id": 1, "author_id": 1, "author_name": "alice"},
            {"post_id": 2, "author_id": None},
        ]
        posts = hydrate(FakeCursor(rows), plan_for("post", "author"))
        assert posts[1].get_relation("author")["name"] == "alice"
        assert posts[2].get_relation("author") is None


    def test_interleaved_parent_keeps_single_relation_children(self) -> None:
        plan = plan_for("author", "post.author.post")
        alice = {"id": 1, "name": "alice"}

        def row(post: int, inner: int) -> dict[str, Any]:
            return joined_row(
                plan,
                {
                    "": alice,
                    "post": {"id": post, "title": f"Post {post}", "author_id": 1},
                    "post.author": alice,
                    "post.author.post": {"id": inner, "title": f"Post {inner}", "author_id": 1},
                },
            )

        authors = hydrate(FakeCursor([row(1, 1), row(2, 1), row(1, 2)]), plan)
        posts = authors[1].get_relation("post")
        assert list(posts) == [1, 2]
        assert list(posts[1].get_relation("author").get_relation("post")) == [1, 2]
        assert list(posts[2].get_relation("author").get_relation("post")) == [1]

    def test_colliding_labels_read_back(self) -> None:
        plan = plan_for("comment", "post.author")
        row = joined_row(
            plan,
            {
                "": {"id": 1, "text": "Great post!", "post_id": 1},
                "post": {"id": 1, "title": "Post 1", "author_id": 7},
                "post.author": {"id": 7, "name": "alice"},
            },
        )
        comment = hydrate(FakeCursor([row]), plan, single=True)
        post = comment.get_relation("post")
        assert post["author_id"] == 7
        assert post.get_relation("author").to_dict() == {"id": 7, "name": "alice"}

class TestRecordOptions:
    def test_read_only(self) -> None:
        posts = hydrate(FakeCursor([post_row(1, 1)]), plan_for("post", "comment"), read_only=True)
        assert posts[1].state.read_only
        assert posts[1].get_relation("comment")[1].state.read_only

    def test_extra_fields(self) -> None:
        plan = plan_for("post", columns=("count(*) as n",), group_by=("id",))
        posts = hydrate(FakeCursor([{"id": 1, "title": "x", "author_id": 1, "n": 3}]), plan)
        assert posts[1].extra == {"n": 3}
        assert "n" not in posts[1]

    def test_keyless_root_keyed_by_row(self) -> None:
        schema = blog_schema().register(TableDescriptor("log", None, ("message",)))
        manager = Manager(ScriptedDriver(), schema)
        plan = joinmap_select(schema=schema, table="log")
        logs = manager.hydrator.hydrate(FakeCursor([{"message": "a"}, {"message": "b"}]), plan)
        assert [log["message"] for log in logs.values()] == ["a", "b"]
        assert list(logs) == [0, 1]
