"""Database error classification."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

UNIQUE_VIOLATION_SQLSTATE = "23505"
# asyncpg reports sqlstate; SQLite only has the message text.
_UNIQUE_MESSAGE_MARKERS = ("duplicate key", "unique constraint")


def _sqlstate(error: IntegrityError) -> str | None:
    original = getattr(error, "orig", None)
    return getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)


def is_unique_violation(error: IntegrityError) -> bool:
    """True when ``error`` came from a unique index, e.g. a handle collision."""
    if _sqlstate(error) == UNIQUE_VIOLATION_SQLSTATE:
        return True
    message = str(getattr(error, "orig", None) or error).lower()
    return any(marker in message for marker in _UNIQUE_MESSAGE_MARKERS)


__all__ = ["UNIQUE_VIOLATION_SQLSTATE", "is_unique_violation"]
