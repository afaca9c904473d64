"""Profile and handle endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from models import User
from services.errors import DomainError
from services.handles import (
    MAX_SUGGESTIONS,
    claim_handle,
    ensure_handle,
    get_user_handle,
    search_handles,
    sync_handle_profile,
)

from .errors import http_error_from

router = APIRouter(tags=["users"])
MAX_PROFILE_NAME_LENGTH = 80
MAX_AVATAR_URL_LENGTH = 512
MAX_SEARCH_QUERY_LENGTH = 40
logger = logging.getLogger(__name__)


class HandleSuggestion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    handle: str
    display_name: str | None = None
    avatar_url: str | None = None


class UserProfile(BaseModel):
    id: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    is_admin: bool
    handle: str | None = None


class UserProfileUpdate(BaseModel):
    display_name: str | None = Field(default=None, max_length=MAX_PROFILE_NAME_LENGTH)
    avatar_url: str | None = Field(default=None, max_length=MAX_AVATAR_URL_LENGTH)


class HandleUpdate(BaseModel):
    handle: str = Field(min_length=1, max_length=64)


def _profile_from(user: User, handle: str | None) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        is_admin=user.is_admin,
        handle=handle,
    )


@router.get("/users/search", response_model=list[HandleSuggestion])
async def search_users(
    q: Annotated[str, Query(min_length=1, max_length=MAX_SEARCH_QUERY_LENGTH)],
    limit: Annotated[int, Query(ge=1, le=MAX_SUGGESTIONS)] = MAX_SUGGESTIONS,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[HandleSuggestion]:
    """Handle suggestions for the mention picker."""
    entries = await search_handles(
        session,
        q,
        limit=limit,
        exclude_user_id=current_user.id,
    )
    return [HandleSuggestion.model_validate(entry) for entry in entries]


@router.get("/me", response_model=UserProfile)
async def read_current_user(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    entry = await get_user_handle(session, current_user.id)
    return _profile_from(current_user, entry.handle if entry is not None else None)


@router.patch("/me", response_model=UserProfile)
async def update_current_user(
    payload: UserProfileUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    user = await session.get(User, current_user.id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    updates = payload.model_dump(exclude_unset=True)
    if "display_name" in updates:
        display_name = (updates["display_name"] or "").strip()
        user.display_name = display_name or None
    if "avatar_url" in updates:
        avatar_url = (updates["avatar_url"] or "").strip()
        user.avatar_url = avatar_url or None

    session.add(user)
    try:
        await session.commit()
    except Exception as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile",
        ) from exc
    await session.refresh(user)
    session.expunge(user)

    # The directory snapshot trails the profile; the backfill script repairs
    # anything missed here.
    handle: str | None = None
    try:
        entry = await ensure_handle(session, user)
        if entry is not None:
            handle = entry.handle
            await sync_handle_profile(session, user)
    except Exception as exc:
        await session.rollback()
        logger.warning(
            "Failed to refresh handle directory entry",
            extra={"user_id": user.id},
            exc_info=exc,
        )
    return _profile_from(user, handle)


@router.put("/me/handle", response_model=UserProfile)
async def update_current_user_handle(
    payload: HandleUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    try:
        entry = await claim_handle(session, current_user, payload.handle)
    except DomainError as exc:
        raise http_error_from(exc) from exc
    return _profile_from(current_user, entry.handle)
