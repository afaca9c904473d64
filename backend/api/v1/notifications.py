"""Mention notification inbox endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from models import User
from services.notifications import (
    DEFAULT_NOTIFICATION_PAGE_SIZE,
    MarkNotificationsReadRequest,
    NotificationMutationResponse,
    NotificationResponse,
    UnreadCountResponse,
    clear_notifications,
    count_unread_notifications,
    list_notifications,
    mark_all_notifications_read,
    mark_notifications_read,
)

from .pagination import MAX_PAGE_SIZE, finalize_page, page_window

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def get_notifications(
    response: Response,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_NOTIFICATION_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[NotificationResponse]:
    notifications = await list_notifications(
        session,
        current_user.id,
        limit=page_window(limit),
        offset=offset,
    )
    notifications = finalize_page(response, notifications, offset=offset, limit=limit)
    return [NotificationResponse.model_validate(item) for item in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnreadCountResponse:
    unread_count = await count_unread_notifications(session, current_user.id)
    return UnreadCountResponse(unread_count=unread_count)


@router.post("/read", response_model=NotificationMutationResponse)
async def read_notifications(
    payload: MarkNotificationsReadRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationMutationResponse:
    try:
        processed = await mark_notifications_read(
            session,
            current_user.id,
            payload.notification_ids,
        )
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notifications",
        ) from exc
    return NotificationMutationResponse(processed_count=processed)


@router.post("/read-all", response_model=NotificationMutationResponse)
async def read_all_notifications(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationMutationResponse:
    try:
        processed = await mark_all_notifications_read(session, current_user.id)
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notifications",
        ) from exc
    return NotificationMutationResponse(processed_count=processed)


@router.delete("", response_model=NotificationMutationResponse)
async def delete_notifications(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationMutationResponse:
    try:
        processed = await clear_notifications(session, current_user.id)
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear notifications",
        ) from exc
    return NotificationMutationResponse(processed_count=processed)
