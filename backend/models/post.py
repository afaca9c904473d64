"""Feed post model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text, func, text
from sqlmodel import Field, SQLModel


class Post(SQLModel, table=True):
    """Admin-authored feed entry, optionally mirrored from a public inbox reply."""

    __tablename__ = "posts"
    __table_args__ = (
        Index("ix_posts_created_at_id", "created_at", "id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    type: str = Field(sa_column=Column(String(16), nullable=False))
    title: str | None = Field(
        default=None, sa_column=Column(String(200), nullable=True)
    )
    body: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    tag: str = Field(
        default="love",
        sa_column=Column(String(16), nullable=False, server_default="love"),
    )
    author_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    author_name: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    author_avatar_url: str | None = Field(
        default=None, sa_column=Column(String(512), nullable=True)
    )
    comments_enabled: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, server_default=text("true")),
    )
    anonymous_question: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    source_message_id: str | None = Field(
        default=None,
        sa_column=Column(
            String(36),
            ForeignKey("messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    created_at: datetime = Field(
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        )
    )
