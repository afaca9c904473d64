"""Mention notification fan-out."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from core import settings
from models import Notification, User
from services.content import html_to_text
from services.identity import ANONYMOUS_DISPLAY_NAME, display_name_for
from services.mentions import ContentEncoding, extract_mentions

from .schemas import NotificationResourceType, NotificationType

_WHITESPACE_RUN = re.compile(r"\s+")
logger = logging.getLogger(__name__)


def build_body_preview(
    body: str | None,
    encoding: ContentEncoding = ContentEncoding.HTML,
) -> str | None:
    """Collapse whitespace and clamp ``body`` to the preview length.

    Markup is stripped only from HTML content; plain text keeps any angle
    brackets the author typed.
    """
    if not body:
        return None
    text = html_to_text(body) if encoding is ContentEncoding.HTML else body
    text = _WHITESPACE_RUN.sub(" ", text).strip()
    if not text:
        return None
    return text[: settings.notification_preview_length]


async def fan_out_mentions(
    session: AsyncSession,
    *,
    actor: User,
    mentioned_ids: Iterable[str],
    notification_type: NotificationType,
    resource_type: NotificationResourceType,
    resource_id: str,
    body_preview: str | None = None,
    preview_encoding: ContentEncoding = ContentEncoding.HTML,
    anonymous: bool = False,
) -> int:
    """Write one notification per mentioned identity other than the actor.

    Each row is committed on its own so one failing recipient does not
    prevent the others from being notified. Calling this twice for the same
    event writes duplicates. An ``anonymous`` actor is stored without id,
    real name or avatar. Returns the number of rows written.
    """
    actor_id = actor.id
    if anonymous:
        stored_actor_id: str | None = None
        actor_name = ANONYMOUS_DISPLAY_NAME
        actor_avatar_url: str | None = None
    else:
        stored_actor_id = actor_id
        actor_name = display_name_for(actor)
        actor_avatar_url = actor.avatar_url
    recipients = [
        recipient_id
        for recipient_id in dict.fromkeys(mentioned_ids)
        if recipient_id and recipient_id != actor_id
    ]
    if not recipients:
        return 0

    preview = build_body_preview(body_preview, preview_encoding)
    written = 0
    for recipient_id in recipients:
        session.add(
            Notification(
                recipient_id=recipient_id,
                type=notification_type.value,
                actor_id=stored_actor_id,
                actor_name=actor_name,
                actor_avatar_url=actor_avatar_url,
                resource_type=resource_type.value,
                resource_id=resource_id,
                body_preview=preview,
            )
        )
        try:
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.warning(
                "Failed to write mention notification",
                extra={
                    "recipient_id": recipient_id,
                    "actor_id": actor_id,
                    "resource_type": resource_type.value,
                    "resource_id": resource_id,
                },
                exc_info=exc,
            )
            continue
        written += 1

    if written:
        logger.info(
            "Fanned out mention notifications",
            extra={
                "actor_id": actor_id,
                "notification_type": notification_type.value,
                "resource_id": resource_id,
                "recipients": len(recipients),
                "written": written,
            },
        )
    return written


async def notify_mentions(
    session: AsyncSession,
    *,
    actor: User,
    content: str | None,
    encoding: ContentEncoding,
    notification_type: NotificationType,
    resource_type: NotificationResourceType,
    resource_id: str,
    body_preview: str | None = None,
    anonymous: bool = False,
) -> int:
    """Extract mentions from freshly stored content and notify the targets.

    Runs after the content itself is committed. Failures are logged and
    reported as zero notifications so the content operation still succeeds;
    a failed lookup stops the pipeline before any row is written.
    """
    actor_id = actor.id
    try:
        mentioned_ids = await extract_mentions(session, content, encoding)
        return await fan_out_mentions(
            session,
            actor=actor,
            mentioned_ids=mentioned_ids,
            notification_type=notification_type,
            resource_type=resource_type,
            resource_id=resource_id,
            body_preview=content if body_preview is None else body_preview,
            preview_encoding=encoding,
            anonymous=anonymous,
        )
    except Exception as exc:
        await session.rollback()
        logger.error(
            "Mention notification pipeline failed",
            extra={
                "actor_id": actor_id,
                "resource_type": resource_type.value,
                "resource_id": resource_id,
            },
            exc_info=exc,
        )
        return 0
