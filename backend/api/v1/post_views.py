"""Shared post/comment view models and query helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Comment, Post


class PostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str | None = None
    body: str | None = None
    tag: str
    author_id: str
    author_name: str | None = None
    author_avatar_url: str | None = None
    comments_enabled: bool
    anonymous_question: str | None = None
    source_message_id: str | None = None
    comment_count: int = 0
    created_at: datetime

    @classmethod
    def from_post(cls, post: Post, *, comment_count: int = 0) -> "PostResponse":
        if post.id is None:
            raise ValueError("Post record missing identifier")
        return cls(
            id=post.id,
            type=post.type,
            title=post.title,
            body=post.body,
            tag=post.tag,
            author_id=post.author_id,
            author_name=post.author_name,
            author_avatar_url=post.author_avatar_url,
            comments_enabled=post.comments_enabled,
            anonymous_question=post.anonymous_question,
            source_message_id=post.source_message_id,
            comment_count=comment_count,
            created_at=post.created_at,
        )


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    user_id: str
    author_name: str | None = None
    author_avatar_url: str | None = None
    body: str
    created_at: datetime


async def collect_comment_counts(
    session: AsyncSession,
    post_ids: list[int],
) -> dict[int, int]:
    if not post_ids:
        return {}

    post_id_column = cast(ColumnElement[int], Comment.post_id)
    comment_id_column = cast(ColumnElement[int], Comment.id)
    result = await session.execute(
        select(post_id_column, cast(Any, func.count(comment_id_column)))
        .where(post_id_column.in_(post_ids))
        .group_by(post_id_column)
    )
    return {post_id: int(count) for post_id, count in result.all()}
