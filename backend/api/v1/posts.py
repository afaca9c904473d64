"""Feed posts and their comments."""

from __future__ import annotations

import enum
from typing import Annotated, Any, NoReturn, cast

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from api.deps import get_current_user, get_db, require_admin
from models import Comment, Post, User
from services.content import html_to_text, normalize_plain_text, sanitize_rich_html
from services.identity import display_name_for
from services.mentions import ContentEncoding, linkify_mentions_in_html
from services.notifications import (
    NotificationResourceType,
    NotificationType,
    notify_mentions,
)

from .pagination import MAX_PAGE_SIZE, finalize_page, page_window
from .post_views import CommentResponse, PostResponse, collect_comment_counts

router = APIRouter(prefix="/posts", tags=["posts"])
MAX_TEXT_POST_LENGTH = 500
MAX_ARTICLE_LENGTH = 50_000
MAX_POST_TITLE_LENGTH = 200
MAX_COMMENT_LENGTH = 1000
DEFAULT_FEED_PAGE_SIZE = 20


class PostType(str, enum.Enum):
    TEXT = "text"
    ARTICLE = "article"


class PostTag(str, enum.Enum):
    LOVE = "love"
    HEALTH = "health"
    MAGIC = "magic"
    ASK = "ask"


class PostCreateRequest(BaseModel):
    type: PostType = PostType.TEXT
    title: str | None = Field(default=None, max_length=MAX_POST_TITLE_LENGTH)
    body: str
    tag: PostTag = PostTag.LOVE
    comments_enabled: bool = True


class CommentCreateRequest(BaseModel):
    body: str


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _desc(column: Any) -> Any:
    return cast(Any, column).desc()


def _raise_post_not_found() -> NoReturn:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")


async def _load_post(session: AsyncSession, post_id: int) -> Post:
    result = await session.execute(select(Post).where(_eq(Post.id, post_id)).limit(1))
    post = result.scalar_one_or_none()
    if post is None:
        _raise_post_not_found()
    return post


def _validate_text_body(body: str) -> str:
    normalized = normalize_plain_text(body)
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="Post text cannot be empty",
        )
    if len(normalized) > MAX_TEXT_POST_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Post text must be at most {MAX_TEXT_POST_LENGTH} characters",
        )
    return normalized


async def _prepare_article_body(session: AsyncSession, body: str) -> str:
    sanitized = sanitize_rich_html(body)
    if not html_to_text(sanitized):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="Article body cannot be empty",
        )
    if len(sanitized) > MAX_ARTICLE_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Article body must be at most {MAX_ARTICLE_LENGTH} characters",
        )
    # Typed @handles become mention anchors so the structured scan finds them.
    return await linkify_mentions_in_html(session, sanitized)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PostResponse)
async def create_post(
    payload: PostCreateRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> PostResponse:
    if payload.type is PostType.ARTICLE:
        body = await _prepare_article_body(session, payload.body)
        encoding = ContentEncoding.HTML
    else:
        body = _validate_text_body(payload.body)
        encoding = ContentEncoding.TEXT

    title = normalize_plain_text(payload.title) or None
    post = Post(
        type=payload.type.value,
        title=title,
        body=body,
        tag=payload.tag.value,
        author_id=current_user.id,
        author_name=display_name_for(current_user),
        author_avatar_url=current_user.avatar_url,
        comments_enabled=payload.comments_enabled,
    )
    session.add(post)
    try:
        await session.commit()
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create post",
        ) from exc
    await session.refresh(post)
    response = PostResponse.from_post(post)

    await notify_mentions(
        session,
        actor=current_user,
        content=body,
        encoding=encoding,
        notification_type=NotificationType.MENTION_POST,
        resource_type=NotificationResourceType.POST,
        resource_id=str(response.id),
    )
    return response


@router.get("", response_model=list[PostResponse])
async def list_posts(
    response: Response,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_FEED_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
    tag: PostTag | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[PostResponse]:
    query = select(Post).order_by(
        _desc(cast(Any, Post.created_at)),
        _desc(cast(Any, Post.id)),
    )
    if tag is not None:
        query = query.where(_eq(Post.tag, tag.value))
    if offset > 0:
        query = query.offset(offset)
    query = query.limit(page_window(limit))

    result = await session.execute(query)
    posts = finalize_page(response, result.scalars().all(), offset=offset, limit=limit)

    post_ids = [post.id for post in posts if post.id is not None]
    comment_counts = await collect_comment_counts(session, post_ids)
    return [
        PostResponse.from_post(
            post,
            comment_count=comment_counts.get(post.id, 0) if post.id is not None else 0,
        )
        for post in posts
    ]


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PostResponse:
    post = await _load_post(session, post_id)
    comment_counts = await collect_comment_counts(session, [post_id])
    return PostResponse.from_post(post, comment_count=comment_counts.get(post_id, 0))


@router.delete("/{post_id}", status_code=status.HTTP_200_OK)
async def delete_post(
    post_id: int,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> dict[str, str]:
    post = await _load_post(session, post_id)
    await session.execute(delete(Comment).where(_eq(Comment.post_id, post_id)))
    await session.delete(post)
    try:
        await session.commit()
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete post",
        ) from exc
    return {"detail": "Deleted"}


@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def get_post_comments(
    post_id: int,
    response: Response,
    limit: Annotated[int | None, Query(ge=1, le=MAX_PAGE_SIZE)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[CommentResponse]:
    await _load_post(session, post_id)

    query = (
        select(Comment)
        .where(_eq(Comment.post_id, post_id))
        .order_by(cast(Any, Comment.created_at), cast(Any, Comment.id))
    )
    if offset > 0:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(page_window(limit))

    result = await session.execute(query)
    comments = list(result.scalars().all())
    if limit is not None:
        comments = finalize_page(response, comments, offset=offset, limit=limit)

    return [CommentResponse.model_validate(comment) for comment in comments]


@router.post(
    "/{post_id}/comments",
    status_code=status.HTTP_201_CREATED,
    response_model=CommentResponse,
)
async def create_comment(
    post_id: int,
    payload: CommentCreateRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommentResponse:
    post = await _load_post(session, post_id)
    if not post.comments_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Comments are disabled for this post",
        )

    body = normalize_plain_text(payload.body)
    if not body:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="Comment text cannot be empty",
        )
    if len(body) > MAX_COMMENT_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Comment must be at most {MAX_COMMENT_LENGTH} characters",
        )

    comment = Comment(
        post_id=post_id,
        user_id=current_user.id,
        author_name=display_name_for(current_user),
        author_avatar_url=current_user.avatar_url,
        body=body,
    )
    session.add(comment)
    try:
        await session.commit()
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create comment",
        ) from exc
    await session.refresh(comment)
    response = CommentResponse.model_validate(comment)

    await notify_mentions(
        session,
        actor=current_user,
        content=body,
        encoding=ContentEncoding.TEXT,
        notification_type=NotificationType.MENTION_COMMENT,
        resource_type=NotificationResourceType.COMMENT,
        resource_id=str(response.id),
    )
    return response
