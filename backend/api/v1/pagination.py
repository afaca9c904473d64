"""Offset pagination for list endpoints.

List queries fetch one row past the page; the extra row only signals that
another page exists and is reported through the ``X-Next-Offset`` header.
"""

from collections.abc import Sequence
from typing import TypeVar

from fastapi import Response

MAX_PAGE_SIZE = 100
NEXT_OFFSET_HEADER = "X-Next-Offset"

T = TypeVar("T")


def page_window(limit: int) -> int:
    return limit + 1


def finalize_page(
    response: Response,
    rows: Sequence[T],
    *,
    offset: int,
    limit: int,
) -> list[T]:
    """Trim the lookahead row and advertise the next offset when there is one."""
    page = list(rows[:limit])
    if len(rows) > limit:
        response.headers[NEXT_OFFSET_HEADER] = str(offset + limit)
    return page
