"""Notification API payload schemas."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

MAX_MARK_READ_IDS = 100


class NotificationType(str, enum.Enum):
    MENTION_POST = "mention_post"
    MENTION_COMMENT = "mention_comment"
    MENTION_REPLY = "mention_reply"


class NotificationResourceType(str, enum.Enum):
    POST = "post"
    COMMENT = "comment"
    MESSAGE = "message"


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: NotificationType
    actor_id: str | None = None
    actor_name: str | None = None
    actor_avatar_url: str | None = None
    resource_type: NotificationResourceType
    resource_id: str
    body_preview: str | None = None
    read: bool
    created_at: datetime


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkNotificationsReadRequest(BaseModel):
    notification_ids: list[int] = Field(min_length=1, max_length=MAX_MARK_READ_IDS)


class NotificationMutationResponse(BaseModel):
    processed_count: int
