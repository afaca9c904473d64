"""Notification domain services."""

from .fanout import build_body_preview, fan_out_mentions, notify_mentions
from .inbox import (
    DEFAULT_NOTIFICATION_PAGE_SIZE,
    clear_notifications,
    count_unread_notifications,
    list_notifications,
    mark_all_notifications_read,
    mark_notifications_read,
)
from .schemas import (
    MarkNotificationsReadRequest,
    NotificationMutationResponse,
    NotificationResourceType,
    NotificationResponse,
    NotificationType,
    UnreadCountResponse,
)

__all__ = [
    "NotificationType",
    "NotificationResourceType",
    "NotificationResponse",
    "UnreadCountResponse",
    "MarkNotificationsReadRequest",
    "NotificationMutationResponse",
    "DEFAULT_NOTIFICATION_PAGE_SIZE",
    "build_body_preview",
    "fan_out_mentions",
    "notify_mentions",
    "list_notifications",
    "count_unread_notifications",
    "mark_notifications_read",
    "mark_all_notifications_read",
    "clear_notifications",
]
