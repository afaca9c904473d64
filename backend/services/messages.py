"""Member-to-admin inbox: sending, status transitions and reply threads."""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, cast

from sqlalchemy import inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from core import settings
from models import Message, Post, User

from .content import html_to_text, normalize_plain_text, sanitize_rich_html
from .errors import (
    InvalidMessageError,
    MessageAccessError,
    MessageNotFoundError,
    ReplyConflictError,
)
from .identity import ANONYMOUS_DISPLAY_NAME, display_name_for
from .mentions import ContentEncoding, linkify_mentions_in_html
from .notifications import NotificationResourceType, NotificationType, notify_mentions
from .replies import (
    ReplyEntry,
    ReplyMode,
    append_reply,
    build_admin_reply,
    build_user_reply,
)

MAX_ADMIN_REPLY_LENGTH = 20_000
MAX_REPLY_ATTEMPTS = 3
PUBLIC_REPLY_POST_TYPE = "article"
PUBLIC_REPLY_POST_TAG = "ask"
logger = logging.getLogger(__name__)


class MessageStatus(str, enum.Enum):
    UNREAD = "unread"
    READ = "read"
    ADDRESSED = "addressed"


class MessageEvent(str, enum.Enum):
    MARK_READ = "mark_read"
    MARK_ADDRESSED = "mark_addressed"
    ADMIN_REPLY = "admin_reply"
    SENDER_REPLY = "sender_reply"


def transition(current: MessageStatus, event: MessageEvent) -> MessageStatus:
    """Return the status a message moves to when ``event`` happens."""
    if event is MessageEvent.MARK_READ:
        # Reading never downgrades an addressed message.
        return MessageStatus.READ if current is MessageStatus.UNREAD else current
    if event is MessageEvent.SENDER_REPLY:
        # A follow-up from the sender reopens the conversation for the admins.
        return MessageStatus.UNREAD
    return MessageStatus.ADDRESSED


@dataclass(slots=True)
class MessageSendResult:
    message: Message | None
    remaining_minutes: int | None = None

    @property
    def is_rate_limited(self) -> bool:
        return self.message is None


@dataclass(slots=True)
class ReplyOutcome:
    message: Message
    entry: ReplyEntry
    mirrored_post_id: int | None = None


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _desc(column: Any) -> Any:
    return cast(Any, column).desc()


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def cooldown_remaining_minutes(
    last_sent_at: datetime,
    now: datetime,
    *,
    cooldown_seconds: int | None = None,
) -> int | None:
    """Whole minutes left before the sender may post again, or None if free."""
    window_ms = (
        settings.message_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
    ) * 1000
    elapsed_ms = (ensure_aware(now) - ensure_aware(last_sent_at)) // timedelta(milliseconds=1)
    remaining_ms = window_ms - elapsed_ms
    if remaining_ms <= 0:
        return None
    return math.ceil(remaining_ms / 60_000)


async def get_message_cooldown(
    session: AsyncSession,
    sender_id: str,
    *,
    now: datetime | None = None,
) -> int | None:
    created_at_column = cast(ColumnElement[datetime], Message.created_at)
    result = await session.execute(
        select(created_at_column)
        .where(_eq(Message.sender_id, sender_id))
        .order_by(_desc(created_at_column))
        .limit(1)
    )
    last_sent_at = result.scalar_one_or_none()
    if last_sent_at is None:
        return None
    return cooldown_remaining_minutes(
        last_sent_at,
        now or datetime.now(timezone.utc),
    )


def _validate_message_body(body: str | None) -> str:
    normalized = normalize_plain_text(body)
    if not normalized:
        raise InvalidMessageError("Message cannot be empty.")
    if len(normalized) > settings.message_max_length:
        raise InvalidMessageError(
            f"Message must be {settings.message_max_length} characters or less."
        )
    return normalized


async def send_message(
    session: AsyncSession,
    sender: User,
    body: str | None,
    *,
    anonymous: bool = False,
    now: datetime | None = None,
) -> MessageSendResult:
    """Store a new unread message unless the sender is still cooling down.

    The cooldown check and the insert are not atomic; concurrent sends from
    one sender can both pass.
    """
    normalized_body = _validate_message_body(body)
    remaining_minutes = await get_message_cooldown(session, sender.id, now=now)
    if remaining_minutes is not None:
        return MessageSendResult(message=None, remaining_minutes=remaining_minutes)

    message = Message(
        sender_id=sender.id,
        sender_name=None if anonymous else display_name_for(sender),
        sender_avatar_url=None if anonymous else sender.avatar_url,
        is_anonymous=anonymous,
        body=normalized_body,
        status=MessageStatus.UNREAD.value,
    )
    session.add(message)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(message)
    return MessageSendResult(message=message)


async def load_message(
    session: AsyncSession,
    message_id: str,
) -> Message:
    result = await session.execute(
        select(Message)
        .where(_eq(Message.id, message_id))
        .limit(1)
        .execution_options(populate_existing=True)
    )
    message = result.scalar_one_or_none()
    if message is None:
        raise MessageNotFoundError()
    return message


def _require_admin(actor: User, action: str) -> None:
    if not actor.is_admin:
        raise MessageAccessError(f"Only admins can {action}.")


async def _apply_status_event(
    session: AsyncSession,
    message_id: str,
    event: MessageEvent,
) -> Message:
    message = await load_message(session, message_id)
    next_status = transition(MessageStatus(message.status), event)
    if next_status.value == message.status:
        return message
    message.status = next_status.value
    session.add(message)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return message


async def mark_message_read(
    session: AsyncSession,
    actor: User,
    message_id: str,
) -> Message:
    _require_admin(actor, "mark messages as read")
    return await _apply_status_event(session, message_id, MessageEvent.MARK_READ)


async def mark_message_addressed(
    session: AsyncSession,
    actor: User,
    message_id: str,
) -> Message:
    _require_admin(actor, "mark messages as addressed")
    return await _apply_status_event(session, message_id, MessageEvent.MARK_ADDRESSED)


async def _build_reply_entry(
    session: AsyncSession,
    actor: User,
    message: Message,
    body: str | None,
    mode: ReplyMode,
) -> tuple[ReplyEntry, MessageEvent]:
    if actor.is_admin:
        sanitized = sanitize_rich_html(body or "")
        if not html_to_text(sanitized):
            raise InvalidMessageError("Reply cannot be empty.")
        if len(sanitized) > MAX_ADMIN_REPLY_LENGTH:
            raise InvalidMessageError(
                f"Reply must be {MAX_ADMIN_REPLY_LENGTH} characters or less."
            )
        entry = build_admin_reply(
            await linkify_mentions_in_html(session, sanitized),
            author_name=display_name_for(actor),
            mode=mode,
        )
        return entry, MessageEvent.ADMIN_REPLY

    if actor.id != message.sender_id:
        raise MessageAccessError("Only the original sender can reply to this message.")
    normalized = normalize_plain_text(body)
    if not normalized:
        raise InvalidMessageError("Reply cannot be empty.")
    if len(normalized) > settings.message_max_length:
        raise InvalidMessageError(
            f"Reply must be {settings.message_max_length} characters or less."
        )
    if message.is_anonymous:
        author_name = ANONYMOUS_DISPLAY_NAME
    else:
        author_name = message.sender_name or display_name_for(actor)
    return build_user_reply(normalized, author_name=author_name), MessageEvent.SENDER_REPLY


async def _append_entry(
    session: AsyncSession,
    message: Message,
    entry: ReplyEntry,
    event: MessageEvent,
    *,
    mirror: Callable[[Message], Post] | None = None,
) -> tuple[Message, int | None]:
    """Append ``entry`` with a version compare-and-swap, retrying lost races.

    When ``mirror`` is given, the post it builds is written in the same
    transaction as the thread update. Returns the reloaded message and the
    mirrored post id.
    """
    message_id = message.id
    for attempt in range(1, MAX_REPLY_ATTEMPTS + 1):
        expected_version = message.version
        next_status = transition(MessageStatus(message.status), event)
        try:
            result = await session.execute(
                update(Message)
                .where(
                    _eq(Message.id, message_id),
                    _eq(Message.version, expected_version),
                )
                .values(
                    reply_body=append_reply(message.reply_body, entry),
                    status=next_status.value,
                    version=expected_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if int(cast(Any, result).rowcount or 0) == 1:
                mirrored_post_id: int | None = None
                if mirror is not None:
                    post = mirror(message)
                    session.add(post)
                    await session.flush()
                    mirrored_post_id = post.id
                await session.commit()
                return await load_message(session, message_id), mirrored_post_id
        except Exception:
            await session.rollback()
            raise

        await session.rollback()
        logger.info(
            "Reply append lost a concurrent update, retrying",
            extra={"message_id": message_id, "attempt": attempt},
        )
        message = await load_message(session, message_id)

    raise ReplyConflictError()


def _build_reply_post(
    message: Message,
    entry: ReplyEntry,
    *,
    author_id: str,
    author_name: str,
    author_avatar_url: str | None,
) -> Post:
    return Post(
        type=PUBLIC_REPLY_POST_TYPE,
        body=entry.body,
        tag=PUBLIC_REPLY_POST_TAG,
        author_id=author_id,
        author_name=author_name,
        author_avatar_url=author_avatar_url,
        anonymous_question=message.body,
        source_message_id=message.id,
    )


async def reply_to_message(
    session: AsyncSession,
    actor: User,
    message_id: str,
    body: str | None,
    *,
    mode: ReplyMode = "private",
) -> ReplyOutcome:
    """Append a reply to a message thread and move its status.

    Admins reply with rich HTML and address the message; a public admin
    reply is also published to the feed in the same transaction. The
    original sender replies with plain text and reopens the message, and
    stays anonymous in mention notifications when the message was sent
    anonymously. Everyone else is rejected before anything is written.
    """
    actor_id = actor.id
    actor_name = display_name_for(actor)
    actor_avatar_url = actor.avatar_url

    message = await load_message(session, message_id)
    entry, event = await _build_reply_entry(session, actor, message, body, mode)
    hide_actor = event is MessageEvent.SENDER_REPLY and message.is_anonymous

    mirror: Callable[[Message], Post] | None = None
    if event is MessageEvent.ADMIN_REPLY and entry.mode == "public":
        mirror = partial(
            _build_reply_post,
            entry=entry,
            author_id=actor_id,
            author_name=actor_name,
            author_avatar_url=actor_avatar_url,
        )
    message, mirrored_post_id = await _append_entry(
        session, message, entry, event, mirror=mirror
    )

    # Retried appends roll back, which expires an attached actor.
    actor_state = inspect(actor)
    if actor_state.persistent and actor_state.expired_attributes:
        await session.refresh(actor)

    await notify_mentions(
        session,
        actor=actor,
        content=entry.body,
        encoding=(
            ContentEncoding.HTML
            if event is MessageEvent.ADMIN_REPLY
            else ContentEncoding.TEXT
        ),
        notification_type=NotificationType.MENTION_REPLY,
        resource_type=NotificationResourceType.MESSAGE,
        resource_id=message_id,
        anonymous=hide_actor,
    )
    if inspect(message).expired_attributes:
        message = await load_message(session, message_id)

    return ReplyOutcome(message=message, entry=entry, mirrored_post_id=mirrored_post_id)


async def delete_message(
    session: AsyncSession,
    actor: User,
    message_id: str,
) -> None:
    message = await load_message(session, message_id)
    if not actor.is_admin and actor.id != message.sender_id:
        raise MessageAccessError("Only the sender or an admin can delete this message.")
    await session.delete(message)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def list_messages_for(
    session: AsyncSession,
    actor: User,
    *,
    status: MessageStatus | None = None,
    limit: int,
    offset: int = 0,
) -> list[Message]:
    """Admins see every message; members see only their own."""
    query = select(Message).order_by(
        _desc(cast(Any, Message.created_at)),
        _desc(cast(Any, Message.id)),
    )
    if not actor.is_admin:
        query = query.where(_eq(Message.sender_id, actor.id))
    if status is not None:
        query = query.where(_eq(Message.status, status.value))
    if offset > 0:
        query = query.offset(offset)
    query = query.limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())
