"""Identity display helpers shared by content surfaces."""

from __future__ import annotations

from models import User

FALLBACK_DISPLAY_NAME = "Member"
ANONYMOUS_DISPLAY_NAME = "Anonymous"


def display_name_for(user: User) -> str:
    """Name shown on content authored by ``user``."""
    if user.display_name and user.display_name.strip():
        return user.display_name.strip()
    local_part = user.email.partition("@")[0]
    return local_part or FALLBACK_DISPLAY_NAME
