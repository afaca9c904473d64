"""Maintenance script to backfill the handle directory.

Creates a handle for every identity that lacks one and re-syncs stale
display name/avatar snapshots.

Usage:
    python scripts/backfill_handles.py

Environment overrides:
    HANDLE_BACKFILL_BATCH_SIZE=200
    HANDLE_BACKFILL_MAX_USERS_PER_RUN=10000
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any, cast

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import ColumnElement

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from db.session import AsyncSessionMaker  # noqa: E402
from models import User  # noqa: E402
from services.handles import ensure_handle, sync_handle_profile  # noqa: E402

BATCH_SIZE_ENV = "HANDLE_BACKFILL_BATCH_SIZE"
MAX_USERS_PER_RUN_ENV = "HANDLE_BACKFILL_MAX_USERS_PER_RUN"
DEFAULT_BATCH_SIZE = 200
DEFAULT_MAX_USERS_PER_RUN = 10_000
logger = logging.getLogger("scripts.backfill_handles")


@dataclass(slots=True)
class BackfillStats:
    users_scanned: int = 0
    handles_present: int = 0
    profiles_synced: int = 0
    failures: int = 0


def _parse_positive_int(raw_value: str | None, *, default: int, label: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{label} must be positive")
    return parsed


def _gt(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column > value)


async def _load_user_batch(
    session: AsyncSession,
    *,
    batch_size: int,
    after_user_id: str | None,
) -> list[User]:
    user_id_column = cast(ColumnElement[str], User.id)
    stmt = select(User).order_by(user_id_column).limit(batch_size)
    if after_user_id is not None:
        stmt = stmt.where(_gt(user_id_column, after_user_id))
    result = await session.execute(stmt)
    users = list(result.scalars().all())
    for user in users:
        session.expunge(user)
    return users


async def backfill_handles(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_users: int = DEFAULT_MAX_USERS_PER_RUN,
) -> BackfillStats:
    """Walk identities in id order, one session per batch."""
    stats = BackfillStats()
    after_user_id: str | None = None

    while stats.users_scanned < max_users:
        async with session_factory() as session:
            users = await _load_user_batch(
                session,
                batch_size=min(batch_size, max_users - stats.users_scanned),
                after_user_id=after_user_id,
            )
            if not users:
                break

            for user in users:
                stats.users_scanned += 1
                try:
                    entry = await ensure_handle(session, user)
                    if entry is None:
                        stats.failures += 1
                        continue
                    stats.handles_present += 1
                    if await sync_handle_profile(session, user):
                        stats.profiles_synced += 1
                except Exception as exc:
                    await session.rollback()
                    stats.failures += 1
                    logger.warning(
                        "Handle backfill failed for user",
                        extra={"user_id": user.id},
                        exc_info=exc,
                    )
            after_user_id = users[-1].id

    return stats


async def run() -> None:
    batch_size = _parse_positive_int(
        os.getenv(BATCH_SIZE_ENV),
        default=DEFAULT_BATCH_SIZE,
        label=BATCH_SIZE_ENV,
    )
    max_users = _parse_positive_int(
        os.getenv(MAX_USERS_PER_RUN_ENV),
        default=DEFAULT_MAX_USERS_PER_RUN,
        label=MAX_USERS_PER_RUN_ENV,
    )

    started_at = perf_counter()
    stats = await backfill_handles(
        AsyncSessionMaker,
        batch_size=batch_size,
        max_users=max_users,
    )
    elapsed_ms = int((perf_counter() - started_at) * 1000)
    print(
        "Handle backfill complete: "
        f"users_scanned={stats.users_scanned}, handles_present={stats.handles_present}, "
        f"profiles_synced={stats.profiles_synced}, failures={stats.failures}, "
        f"elapsed_ms={elapsed_ms}"
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run())


if __name__ == "__main__":
    main()
