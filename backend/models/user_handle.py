"""Handle directory model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, func
from sqlmodel import Field, SQLModel


class UserHandle(SQLModel, table=True):
    """Unique @handle bound to one identity, with a display snapshot for lookups."""

    __tablename__ = "user_handles"

    user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    handle: str = Field(
        sa_column=Column(String(20), unique=True, nullable=False, index=True)
    )
    # Denormalized from users; kept in sync on profile updates and by the
    # backfill script.
    display_name: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    avatar_url: str | None = Field(
        default=None, sa_column=Column(String(512), nullable=True)
    )
    created_at: datetime = Field(
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        ),
    )
    updated_at: datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        ),
    )
