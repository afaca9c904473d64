"""Mention notification model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, func, text
from sqlmodel import Field, SQLModel


class Notification(SQLModel, table=True):
    """One recipient's record of being mentioned.

    The actor name and avatar are a snapshot taken at creation time and are
    never rewritten when the actor later changes their profile. Anonymous
    actors are stored without an id.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index(
            "ix_notifications_recipient_created_at",
            "recipient_id",
            "created_at",
        ),
        Index("ix_notifications_recipient_read", "recipient_id", "read"),
    )

    id: int | None = Field(default=None, primary_key=True)
    recipient_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    type: str = Field(sa_column=Column(String(32), nullable=False))
    actor_id: str | None = Field(
        default=None,
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
    )
    actor_name: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    actor_avatar_url: str | None = Field(
        default=None, sa_column=Column(String(512), nullable=True)
    )
    resource_type: str = Field(sa_column=Column(String(16), nullable=False))
    resource_id: str = Field(sa_column=Column(String(64), nullable=False))
    body_preview: str | None = Field(
        default=None, sa_column=Column(String(200), nullable=True)
    )
    read: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    created_at: datetime = Field(
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        )
    )
