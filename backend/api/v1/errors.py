"""Translation of service errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from services.errors import (
    DomainError,
    HandleTakenError,
    InvalidHandleError,
    InvalidMessageError,
    MessageAccessError,
    MessageNotFoundError,
    ReplyConflictError,
)

_STATUS_BY_ERROR: dict[type[DomainError], int] = {
    InvalidHandleError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    InvalidMessageError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    MessageAccessError: status.HTTP_403_FORBIDDEN,
    MessageNotFoundError: status.HTTP_404_NOT_FOUND,
    HandleTakenError: status.HTTP_409_CONFLICT,
    ReplyConflictError: status.HTTP_409_CONFLICT,
}


def http_error_from(error: DomainError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.detail)
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error.detail,
    )
