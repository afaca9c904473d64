"""Member-to-admin inbox message model."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlmodel import Field, SQLModel


class Message(SQLModel, table=True):
    """Directed note from a member to the admins, with its reply thread."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_sender_created_at", "sender_id", "created_at"),
        Index("ix_messages_status_created_at", "status", "created_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), sa_column=Column(String(36), primary_key=True))
    sender_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    sender_name: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    sender_avatar_url: str | None = Field(
        default=None, sa_column=Column(String(512), nullable=True)
    )
    is_anonymous: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    body: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(
        default="unread",
        sa_column=Column(String(16), nullable=False, server_default="unread"),
    )
    # Serialized reply thread; see services.replies.
    reply_body: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    # Bumped on every reply append so concurrent writers can detect lost updates.
    version: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default=text("0")),
    )
    created_at: datetime = Field(
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        )
    )
