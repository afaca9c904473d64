"""Domain errors raised by services and translated to HTTP responses by routers."""

from __future__ import annotations


class DomainError(Exception):
    """Base class for expected, user-facing service failures."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


INVALID_HANDLE_DETAIL = (
    "Handle must be 3-20 characters: a lowercase letter followed by "
    "lowercase letters, digits or underscores"
)


class InvalidHandleError(DomainError):
    def __init__(self, detail: str = INVALID_HANDLE_DETAIL) -> None:
        super().__init__(detail)


class HandleTakenError(DomainError):
    def __init__(self, detail: str = "Handle is already taken, try another") -> None:
        super().__init__(detail)


class InvalidMessageError(DomainError):
    pass


class MessageNotFoundError(DomainError):
    def __init__(self, detail: str = "Message not found") -> None:
        super().__init__(detail)


class MessageAccessError(DomainError):
    pass


class ReplyConflictError(DomainError):
    def __init__(self, detail: str = "Message was updated concurrently, please retry") -> None:
        super().__init__(detail)


__all__ = [
    "DomainError",
    "InvalidHandleError",
    "HandleTakenError",
    "InvalidMessageError",
    "MessageNotFoundError",
    "MessageAccessError",
    "ReplyConflictError",
]
