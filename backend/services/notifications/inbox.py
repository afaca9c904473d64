"""Recipient-side notification queries and mutations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, cast

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Notification

from .common import desc, eq, is_in

DEFAULT_NOTIFICATION_PAGE_SIZE = 20


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    *,
    limit: int = DEFAULT_NOTIFICATION_PAGE_SIZE,
    offset: int = 0,
) -> list[Notification]:
    query = (
        select(Notification)
        .where(eq(Notification.recipient_id, user_id))
        .order_by(
            desc(cast(Any, Notification.created_at)),
            desc(cast(Any, Notification.id)),
        )
        .limit(limit)
    )
    if offset > 0:
        query = query.offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_unread_notifications(session: AsyncSession, user_id: str) -> int:
    id_column = cast(ColumnElement[int], Notification.id)
    result = await session.execute(
        select(cast(Any, func.count(id_column))).where(
            eq(Notification.recipient_id, user_id),
            eq(Notification.read, False),
        )
    )
    return int(result.scalar_one() or 0)


async def mark_notifications_read(
    session: AsyncSession,
    user_id: str,
    notification_ids: Sequence[int],
) -> int:
    """Mark the given notifications read; ids owned by others are ignored."""
    unique_ids = sorted(set(notification_ids))
    if not unique_ids:
        return 0
    result = await session.execute(
        update(Notification)
        .where(
            eq(Notification.recipient_id, user_id),
            is_in(Notification.id, unique_ids),
            eq(Notification.read, False),
        )
        .values(read=True)
    )
    await session.commit()
    return int(cast(Any, result).rowcount or 0)


async def mark_all_notifications_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(Notification)
        .where(
            eq(Notification.recipient_id, user_id),
            eq(Notification.read, False),
        )
        .values(read=True)
    )
    await session.commit()
    return int(cast(Any, result).rowcount or 0)


async def clear_notifications(session: AsyncSession, user_id: str) -> int:
    """Delete every notification addressed to ``user_id``."""
    result = await session.execute(
        delete(Notification).where(eq(Notification.recipient_id, user_id))
    )
    await session.commit()
    return int(cast(Any, result).rowcount or 0)
