"""SQLModel models package."""

from .comment import Comment
from .message import Message
from .notification import Notification
from .post import Post
from .user import User
from .user_handle import UserHandle

__all__ = [
    "User",
    "UserHandle",
    "Post",
    "Comment",
    "Notification",
    "Message",
]
