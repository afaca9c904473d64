"""Handle directory: validation, generation, uniqueness and lookups."""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Iterable
from typing import Any, cast

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from db.errors import is_unique_violation
from models import User, UserHandle

from .errors import HandleTakenError, InvalidHandleError

HANDLE_MIN_LENGTH = 3
HANDLE_MAX_LENGTH = 20
HANDLE_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,19}$")
SUFFIX_BASE_LENGTH = 10
MAX_SUFFIX_ATTEMPTS = 5
MAX_SUGGESTIONS = 8
FALLBACK_HANDLE_SEED = "member"

_NON_HANDLE_RUN = re.compile(r"[^a-z0-9]+")
logger = logging.getLogger(__name__)


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


LIKE_ESCAPE = "\\"


def _escape_like(term: str) -> str:
    """Make ``%``, ``_`` and the escape character match literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def _ilike(column: Any, pattern: str) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column.ilike(pattern, escape=LIKE_ESCAPE))


def _is_not_null(column: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column.isnot(None))


def is_valid_handle(handle: str) -> bool:
    return HANDLE_PATTERN.fullmatch(handle) is not None


def normalize_handle(raw_handle: str) -> str:
    return raw_handle.strip().lower()


def generate_handle(display_name: str) -> str:
    """Derive a valid handle from a display name.

    The result is deterministic for a given name and always passes
    ``is_valid_handle``.
    """
    handle = _NON_HANDLE_RUN.sub("_", display_name.lower()).strip("_")

    if handle and not handle[0].isalpha():
        handle = f"u_{handle}"

    handle = handle.ljust(HANDLE_MIN_LENGTH, "_")
    handle = handle[:HANDLE_MAX_LENGTH].rstrip("_")

    # Filler must not be "_" or the strip above would undo it.
    return handle.ljust(HANDLE_MIN_LENGTH, "x")


def with_numeric_suffix(handle: str) -> str:
    return f"{handle[:SUFFIX_BASE_LENGTH]}{random.randint(100, 999)}"


def _handle_seed(user: User) -> str:
    if user.display_name and user.display_name.strip():
        return user.display_name
    local_part = user.email.partition("@")[0]
    return local_part or FALLBACK_HANDLE_SEED


async def get_user_handle(session: AsyncSession, user_id: str) -> UserHandle | None:
    result = await session.execute(
        select(UserHandle).where(_eq(UserHandle.user_id, user_id)).limit(1)
    )
    return result.scalar_one_or_none()


async def find_handle_owner(session: AsyncSession, handle: str) -> str | None:
    user_id_column = cast(ColumnElement[str], UserHandle.user_id)
    result = await session.execute(
        select(user_id_column).where(_eq(UserHandle.handle, handle)).limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_handle_map(
    session: AsyncSession,
    handles: Iterable[str],
) -> dict[str, str]:
    """Return ``{handle: user_id}`` for the handles that exist."""
    unique_handles = sorted(set(handles))
    if not unique_handles:
        return {}

    handle_column = cast(ColumnElement[str], UserHandle.handle)
    user_id_column = cast(ColumnElement[str], UserHandle.user_id)
    result = await session.execute(
        select(handle_column, user_id_column).where(handle_column.in_(unique_handles))
    )
    return {handle: user_id for handle, user_id in result.all()}


async def resolve_handles_to_identities(
    session: AsyncSession,
    handles: Iterable[str],
) -> list[User]:
    """Look up identities by handle; unknown handles are omitted.

    Results follow the order of ``handles``.
    """
    ordered_handles = list(dict.fromkeys(handles))
    if not ordered_handles:
        return []

    handle_column = cast(ColumnElement[str], UserHandle.handle)
    result = await session.execute(
        select(handle_column, User)
        .join(UserHandle, _eq(UserHandle.user_id, User.id))
        .where(handle_column.in_(ordered_handles))
    )
    users_by_handle = {handle: user for handle, user in result.all()}
    return [users_by_handle[handle] for handle in ordered_handles if handle in users_by_handle]


async def claim_handle(
    session: AsyncSession,
    user: User,
    raw_handle: str,
) -> UserHandle:
    """Bind a user-chosen handle to ``user``.

    Raises InvalidHandleError for a malformed handle and HandleTakenError
    when another identity owns it; the caller's current handle is kept.
    """
    handle = normalize_handle(raw_handle)
    if not is_valid_handle(handle):
        raise InvalidHandleError()

    user_id = user.id
    owner_id = await find_handle_owner(session, handle)
    if owner_id is not None and owner_id != user_id:
        raise HandleTakenError()

    entry = await get_user_handle(session, user_id)
    if entry is not None and entry.handle == handle:
        return entry
    if entry is None:
        entry = UserHandle(
            user_id=user_id,
            handle=handle,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
        )
    else:
        entry.handle = handle
    session.add(entry)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_unique_violation(exc):
            raise HandleTakenError() from exc
        raise
    await session.refresh(entry)
    return entry


async def ensure_handle(session: AsyncSession, user: User) -> UserHandle | None:
    """Make sure ``user`` has a directory entry, generating one if needed.

    A taken candidate is replaced by ``candidate[:10]`` plus a random
    three-digit suffix, drawing a fresh suffix for up to
    ``MAX_SUFFIX_ATTEMPTS`` collisions. Conflicts never raise. Returns None
    only when every suffixed candidate collided; the backfill script picks
    such identities up on its next run.
    """
    user_id = user.id
    display_name = user.display_name
    avatar_url = user.avatar_url

    existing = await get_user_handle(session, user_id)
    if existing is not None:
        return existing

    base = generate_handle(_handle_seed(user))
    candidate = base
    suffix_attempts = 0
    owner_id = await find_handle_owner(session, candidate)
    if owner_id is not None and owner_id != user_id:
        candidate = with_numeric_suffix(base)
        suffix_attempts = 1

    while True:
        entry = UserHandle(
            user_id=user_id,
            handle=candidate,
            display_name=display_name,
            avatar_url=avatar_url,
        )
        session.add(entry)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            if not is_unique_violation(exc):
                raise
            concurrent = await get_user_handle(session, user_id)
            if concurrent is not None:
                return concurrent
            if suffix_attempts >= MAX_SUFFIX_ATTEMPTS:
                logger.warning(
                    "Generated handle kept colliding after suffix retries",
                    extra={"user_id": user_id, "handle": candidate},
                )
                return None
            candidate = with_numeric_suffix(base)
            suffix_attempts += 1
            continue
        await session.refresh(entry)
        return entry


async def sync_handle_profile(session: AsyncSession, user: User) -> bool:
    """Copy the identity's display name and avatar into its directory row.

    Returns True when a stale row was updated.
    """
    user_id_column = cast(ColumnElement[str], UserHandle.user_id)
    display_name_column = cast(ColumnElement[str | None], UserHandle.display_name)
    avatar_url_column = cast(ColumnElement[str | None], UserHandle.avatar_url)
    result = await session.execute(
        update(UserHandle)
        .where(
            _eq(user_id_column, user.id),
            or_(
                display_name_column.is_distinct_from(user.display_name),
                avatar_url_column.is_distinct_from(user.avatar_url),
            ),
        )
        .values(display_name=user.display_name, avatar_url=user.avatar_url)
    )
    updated_rows = int(cast(Any, result).rowcount or 0)
    await session.commit()
    return updated_rows > 0


async def search_handles(
    session: AsyncSession,
    query: str,
    *,
    limit: int = MAX_SUGGESTIONS,
    exclude_user_id: str | None = None,
) -> list[UserHandle]:
    """Rank handle-prefix matches ahead of display-name substring matches."""
    term = query.strip().lower()
    if not term:
        return []
    escaped = _escape_like(term)

    handle_column = cast(Any, UserHandle.handle)
    display_name_column = cast(Any, UserHandle.display_name)
    handle_match = _ilike(handle_column, f"{escaped}%")
    name_match = and_(
        _is_not_null(display_name_column),
        _ilike(display_name_column, f"%{escaped}%"),
    )

    stmt = (
        select(UserHandle)
        .where(or_(handle_match, name_match))
        .order_by(
            case((handle_match, 0), else_=1),
            handle_column,
        )
        .limit(min(limit, MAX_SUGGESTIONS))
    )
    if exclude_user_id is not None:
        stmt = stmt.where(~_eq(UserHandle.user_id, exclude_user_id))

    result = await session.execute(stmt)
    return list(result.scalars().all())
