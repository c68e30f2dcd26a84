"""
Blog example - minimal configuration.

Usage:
    DATABASE_URL=sqlite+aiosqlite:///blog.db uvicorn example.blog.main:app

    POST /api/PostResource/search
    {"filters": [{"field": "views", "operator": ">", "value": 100}],
     "includes": [{"relation": "comments", "limit": 10}],
     "aggregates": [{"relation": "comments", "type": "count"}]}

    POST /api/PostResource/mutate
    {"title": "Hello", "relations": {"tags": {"operation": "attach", "operations": [{"id": 1}]}}}
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column

from restgraph import (
    Base,
    Resource,
    ResourceRegistry,
    belongs_to,
    belongs_to_many,
    create_app,
    has_many,
)


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    views: Mapped[int] = mapped_column(Integer, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    body: Mapped[str] = mapped_column(String(1000))
    post_id: Mapped[Optional[int]] = mapped_column(ForeignKey("posts.id"), nullable=True)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64))


post_tag = Table(
    "post_tag",
    Base.metadata,
    Column("post_id", ForeignKey("posts.id"), nullable=False),
    Column("tag_id", ForeignKey("tags.id"), nullable=False),
    Column("position", Integer, nullable=True),
)


registry = ResourceRegistry()


@registry.register
class PostResource(Resource):
    model = Post
    exposed_fields = ("id", "title", "views")
    exposed_scopes = {
        "popular": lambda stmt, table, minimum=100: stmt.where(table.c.views >= minimum),
    }
    default_order_by = {"id": "desc"}
    soft_deletes = True
    relations = (
        has_many("comments", "CommentResource", foreign_key="post_id"),
        belongs_to_many(
            "tags",
            "TagResource",
            pivot_table="post_tag",
            foreign_pivot_key="post_id",
            related_pivot_key="tag_id",
            pivot_fields=("position",),
        ),
    )


@registry.register
class CommentResource(Resource):
    model = Comment
    exposed_fields = ("id", "body")
    relations = (
        belongs_to("post", "PostResource", foreign_key="post_id"),
    )


@registry.register
class TagResource(Resource):
    model = Tag
    exposed_fields = ("id", "name")


app = create_app(registry.build(), title="blog")
