"""@mention extraction for rich HTML and plain-text content."""

from __future__ import annotations

import enum
import html as html_lib
import re
from collections.abc import Iterable
from typing import Any, cast

from bs4 import BeautifulSoup
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import User

from .handles import resolve_handle_map, resolve_handles_to_identities

# Handles are always lowercase, so a mixed-case "@Alice" is intentionally
# not a mention.
MENTION_PATTERN = re.compile(r"@([a-z][a-z0-9_]{2,19})\b", re.ASCII)
MENTION_MARKER = "mention"
PROFILE_PATH_PATTERN = re.compile(r"^/profile/([^/?#\s]+)/?$")
_TAG_SPLIT_PATTERN = re.compile(r"(<[^>]*>)")
_ANCHOR_OPEN_PATTERN = re.compile(r"^<a[\s>]", re.IGNORECASE)
_ANCHOR_CLOSE_PATTERN = re.compile(r"^</a\s*>", re.IGNORECASE)


class ContentEncoding(str, enum.Enum):
    HTML = "html"
    TEXT = "text"


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


def _is_mention_anchor(tag: Any) -> bool:
    if tag.name != "a":
        return False
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return MENTION_MARKER in classes or tag.get("data-type") == MENTION_MARKER


def _identity_from_anchor(tag: Any) -> str | None:
    data_id = tag.get("data-id")
    if isinstance(data_id, str) and data_id.strip():
        return data_id.strip()

    href = tag.get("href")
    if isinstance(href, str):
        match = PROFILE_PATH_PATTERN.match(href.strip())
        if match:
            return match.group(1)
    return None


def extract_mentions_from_html(content: str | None) -> list[str]:
    """Return identity ids embedded in mention anchors, first occurrence first."""
    if not content:
        return []
    soup = BeautifulSoup(content, "html.parser")
    identity_ids: list[str] = []
    for tag in soup.find_all(_is_mention_anchor):
        identity_id = _identity_from_anchor(tag)
        if identity_id is not None:
            identity_ids.append(identity_id)
    return _dedupe(identity_ids)


def extract_mentions_from_text(content: str | None) -> list[str]:
    """Return ``@handle`` handles in order of first appearance."""
    if not content:
        return []
    return _dedupe(match.group(1) for match in MENTION_PATTERN.finditer(content))


async def _filter_existing_user_ids(
    session: AsyncSession,
    user_ids: list[str],
) -> list[str]:
    if not user_ids:
        return []
    user_id_column = cast(ColumnElement[str], User.id)
    result = await session.execute(
        select(user_id_column).where(user_id_column.in_(user_ids))
    )
    existing = {row[0] for row in result.all()}
    return [user_id for user_id in user_ids if user_id in existing]


async def extract_mentions(
    session: AsyncSession,
    content: str | None,
    encoding: ContentEncoding,
) -> list[str]:
    """Resolve the identities mentioned in ``content``.

    Rich HTML already carries identity ids from the editor, so they are only
    checked for existence; plain text goes through the handle directory.
    """
    if encoding is ContentEncoding.HTML:
        return await _filter_existing_user_ids(
            session,
            extract_mentions_from_html(content),
        )

    handles = extract_mentions_from_text(content)
    identities = await resolve_handles_to_identities(session, handles)
    return [identity.id for identity in identities]


def _mention_anchor(user_id: str, handle: str) -> str:
    escaped_id = html_lib.escape(user_id, quote=True)
    return (
        f'<a href="/profile/{escaped_id}" class="{MENTION_MARKER}" '
        f'data-id="{escaped_id}">@{handle}</a>'
    )


async def linkify_mentions_in_html(session: AsyncSession, content: str) -> str:
    """Wrap bare ``@handle`` text in mention anchors for handles that exist.

    Text inside tags (attributes) is never rewritten; unknown handles are
    left as typed.
    """
    text_only = _TAG_SPLIT_PATTERN.sub("", content)
    handles = extract_mentions_from_text(text_only)
    if not handles:
        return content

    handle_map = await resolve_handle_map(session, handles)
    if not handle_map:
        return content

    def _replace(match: re.Match[str]) -> str:
        user_id = handle_map.get(match.group(1))
        if user_id is None:
            return match.group(0)
        return _mention_anchor(user_id, match.group(1))

    parts = _TAG_SPLIT_PATTERN.split(content)
    anchor_depth = 0
    for index, part in enumerate(parts):
        if part.startswith("<"):
            if _ANCHOR_OPEN_PATTERN.match(part):
                anchor_depth += 1
            elif _ANCHOR_CLOSE_PATTERN.match(part):
                anchor_depth = max(anchor_depth - 1, 0)
            continue
        # Existing links keep their text as-is.
        if anchor_depth:
            continue
        parts[index] = MENTION_PATTERN.sub(_replace, part)
    return "".join(parts)
