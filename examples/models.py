"""Minimal tables for sqla-joinmap examples.

Foreign keys follow the ``<table>_id`` convention, which is what
discovery looks for; ``post_tag`` is recognised as a join table by name.
"""

from __future__ import annotations

import sqlalchemy as sa


metadata = sa.MetaData()

user = sa.Table(
    "user",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(100)),
)

post = sa.Table(
    "post",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("title", sa.String(200)),
    sa.Column("user_id", sa.Integer, sa.ForeignKey("user.id")),
)

comment = sa.Table(
    "comment",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("text", sa.Text),
    sa.Column("post_id", sa.Integer, sa.ForeignKey("post.id")),
)

tag = sa.Table(
    "tag",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(50)),
)

post_tag = sa.Table(
    "post_tag",
    metadata,
    sa.Column("post_id", sa.Integer, sa.ForeignKey("post.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tag.id"), primary_key=True),
)
