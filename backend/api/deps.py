"""Request dependencies shared by the API routers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, cast

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from core import ACCESS_TOKEN_TYPE, decode_token
from db import get_session
from models import User
from services.rate_limiter import ACCESS_COOKIE_NAME, extract_bearer_token


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _request_token(request: Request) -> str | None:
    return extract_bearer_token(request) or request.cookies.get(ACCESS_COOKIE_NAME)


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the identity behind the bearer token or access cookie."""
    token = _request_token(request)
    if not token:
        raise _unauthorized()

    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise _unauthorized() from exc

    subject = payload.get("sub")
    if payload.get("type") != ACCESS_TOKEN_TYPE or not isinstance(subject, str):
        raise _unauthorized()

    result = await session.execute(
        select(User).where(cast(ColumnElement[bool], cast(Any, User.id) == subject))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized()

    # Detached so later rollbacks on the request session never expire it.
    session.expunge(user)
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
