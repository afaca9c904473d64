"""Member-to-admin message inbox endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from models import Message, User
from services.errors import DomainError
from services.messages import (
    MessageStatus,
    delete_message,
    get_message_cooldown,
    list_messages_for,
    mark_message_addressed,
    mark_message_read,
    reply_to_message,
    send_message,
)
from services.replies import ReplyEntry, ReplyMode, decode_reply_thread

from .errors import http_error_from
from .pagination import MAX_PAGE_SIZE, finalize_page, page_window

router = APIRouter(prefix="/messages", tags=["messages"])
DEFAULT_MESSAGE_PAGE_SIZE = 20


class MessageCreateRequest(BaseModel):
    body: str
    anonymous: bool = False


class ReplyCreateRequest(BaseModel):
    body: str
    mode: ReplyMode = "private"


class MessageResponse(BaseModel):
    id: str
    sender_id: str | None = None
    sender_name: str | None = None
    sender_avatar_url: str | None = None
    is_anonymous: bool
    body: str
    status: MessageStatus
    replies: list[ReplyEntry]
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message, *, viewer: User) -> "MessageResponse":
        # Admins never learn who sent an anonymous message.
        hide_sender = message.is_anonymous and viewer.id != message.sender_id
        return cls(
            id=message.id,
            sender_id=None if hide_sender else message.sender_id,
            sender_name=message.sender_name,
            sender_avatar_url=message.sender_avatar_url,
            is_anonymous=message.is_anonymous,
            body=message.body,
            status=MessageStatus(message.status),
            replies=decode_reply_thread(message.reply_body),
            created_at=message.created_at,
        )


class ReplyResponse(BaseModel):
    message: MessageResponse
    entry: ReplyEntry
    mirrored_post_id: int | None = None


class CooldownResponse(BaseModel):
    can_send: bool
    remaining_minutes: int | None = None


@router.post("", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def create_message(
    payload: MessageCreateRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        result = await send_message(
            session,
            current_user,
            payload.body,
            anonymous=payload.anonymous,
        )
    except DomainError as exc:
        raise http_error_from(exc) from exc
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send message",
        ) from exc

    if result.message is None:
        remaining_minutes = result.remaining_minutes or 1
        return JSONResponse(
            {
                "detail": f"You can send another message in {remaining_minutes} minutes",
                "remaining_minutes": remaining_minutes,
            },
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(remaining_minutes * 60)},
        )
    return MessageResponse.from_message(result.message, viewer=current_user)


@router.get("", response_model=list[MessageResponse])
async def get_messages(
    response: Response,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_MESSAGE_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
    status_filter: Annotated[MessageStatus | None, Query(alias="status")] = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageResponse]:
    messages = await list_messages_for(
        session,
        current_user,
        status=status_filter,
        limit=page_window(limit),
        offset=offset,
    )
    messages = finalize_page(response, messages, offset=offset, limit=limit)
    return [MessageResponse.from_message(message, viewer=current_user) for message in messages]


@router.get("/cooldown", response_model=CooldownResponse)
async def get_cooldown(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CooldownResponse:
    remaining_minutes = await get_message_cooldown(session, current_user.id)
    return CooldownResponse(
        can_send=remaining_minutes is None,
        remaining_minutes=remaining_minutes,
    )


@router.post("/{message_id}/read", response_model=MessageResponse)
async def read_message(
    message_id: str,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    try:
        message = await mark_message_read(session, current_user, message_id)
    except DomainError as exc:
        raise http_error_from(exc) from exc
    return MessageResponse.from_message(message, viewer=current_user)


@router.post("/{message_id}/addressed", response_model=MessageResponse)
async def address_message(
    message_id: str,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    try:
        message = await mark_message_addressed(session, current_user, message_id)
    except DomainError as exc:
        raise http_error_from(exc) from exc
    return MessageResponse.from_message(message, viewer=current_user)


@router.post(
    "/{message_id}/replies",
    status_code=status.HTTP_201_CREATED,
    response_model=ReplyResponse,
)
async def create_reply(
    message_id: str,
    payload: ReplyCreateRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ReplyResponse:
    try:
        outcome = await reply_to_message(
            session,
            current_user,
            message_id,
            payload.body,
            mode=payload.mode,
        )
    except DomainError as exc:
        raise http_error_from(exc) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reply to message",
        ) from exc
    return ReplyResponse(
        message=MessageResponse.from_message(outcome.message, viewer=current_user),
        entry=outcome.entry,
        mirrored_post_id=outcome.mirrored_post_id,
    )


@router.delete("/{message_id}", status_code=status.HTTP_200_OK)
async def remove_message(
    message_id: str,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    try:
        await delete_message(session, current_user, message_id)
    except DomainError as exc:
        raise http_error_from(exc) from exc
    return {"detail": "Deleted"}
