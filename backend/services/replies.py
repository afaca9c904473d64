"""Reply thread codec for ``messages.reply_body``.

A thread is a JSON array of entries, oldest first. Rows written before
threads existed hold a single HTML string; those decode as one private
admin entry with no timestamp.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from core import settings

ReplyRole = Literal["admin", "user"]
ReplyMode = Literal["private", "public"]


class ReplyEntry(BaseModel):
    body: str
    created_at: str = ""
    role: ReplyRole = "admin"
    author_name: str
    # Only admin entries carry a mode; member replies are always private.
    mode: ReplyMode | None = None


class _MalformedThread(ValueError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _legacy_entry(raw: str) -> ReplyEntry:
    return ReplyEntry(
        body=raw,
        created_at="",
        role="admin",
        author_name=settings.admin_display_name,
        mode="private",
    )


def _entry_from_payload(payload: Any) -> ReplyEntry:
    if not isinstance(payload, dict):
        raise _MalformedThread("reply entry must be an object")

    role = payload.get("role") or "admin"
    mode = payload.get("mode")
    if role == "admin":
        mode = mode or "private"
    else:
        mode = None

    try:
        return ReplyEntry(
            body=payload.get("body") or "",
            created_at=payload.get("created_at") or "",
            role=role,
            author_name=payload.get("author_name") or settings.admin_display_name,
            mode=mode,
        )
    except ValidationError as exc:
        raise _MalformedThread(str(exc)) from exc


def decode_reply_thread(raw: str | None) -> list[ReplyEntry]:
    if not raw:
        return []

    try:
        parsed = json.loads(raw)
    except ValueError:
        return [_legacy_entry(raw)]
    if not isinstance(parsed, list):
        return [_legacy_entry(raw)]

    try:
        return [_entry_from_payload(payload) for payload in parsed]
    except _MalformedThread:
        return [_legacy_entry(raw)]


def encode_reply_thread(entries: list[ReplyEntry]) -> str:
    return json.dumps(
        [entry.model_dump(mode="json") for entry in entries],
        ensure_ascii=False,
    )


def append_reply(raw: str | None, entry: ReplyEntry) -> str:
    """Return ``raw`` with ``entry`` appended after every existing entry."""
    entries = decode_reply_thread(raw)
    entries.append(entry)
    return encode_reply_thread(entries)


def build_admin_reply(body: str, *, author_name: str, mode: ReplyMode) -> ReplyEntry:
    return ReplyEntry(
        body=body,
        created_at=_utc_now_iso(),
        role="admin",
        author_name=author_name,
        mode=mode,
    )


def build_user_reply(body: str, *, author_name: str) -> ReplyEntry:
    return ReplyEntry(
        body=body,
        created_at=_utc_now_iso(),
        role="user",
        author_name=author_name,
        mode=None,
    )
