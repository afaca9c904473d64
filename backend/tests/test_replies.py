"""Tests for the reply thread codec."""

import json

from core.config import settings
from services.replies import (
    ReplyEntry,
    append_reply,
    build_admin_reply,
    build_user_reply,
    decode_reply_thread,
    encode_reply_thread,
)


def test_empty_values_decode_to_empty_thread() -> None:
    assert decode_reply_thread(None) == []
    assert decode_reply_thread("") == []


def test_legacy_html_decodes_as_single_private_admin_entry() -> None:
    thread = decode_reply_thread("<p>Thanks for writing in</p>")

    assert thread == [
        ReplyEntry(
            body="<p>Thanks for writing in</p>",
            created_at="",
            role="admin",
            author_name=settings.admin_display_name,
            mode="private",
        )
    ]


def test_non_list_json_is_treated_as_legacy() -> None:
    assert decode_reply_thread('{"body": "x"}')[0].body == '{"body": "x"}'
    assert decode_reply_thread("42")[0].body == "42"


def test_malformed_entry_makes_whole_value_legacy() -> None:
    raw = json.dumps([{"body": "ok", "role": "admin"}, "not an entry"])

    thread = decode_reply_thread(raw)

    assert len(thread) == 1
    assert thread[0].body == raw


def test_decode_fills_defaults_and_normalizes_modes() -> None:
    raw = json.dumps(
        [
            {"body": "first"},
            {"body": "second", "role": "user", "author_name": "Sam", "mode": "public"},
            {"body": "third", "role": "admin", "mode": "public", "author_name": "Ash"},
        ]
    )

    thread = decode_reply_thread(raw)

    assert [entry.role for entry in thread] == ["admin", "user", "admin"]
    assert [entry.mode for entry in thread] == ["private", None, "public"]
    assert thread[0].author_name == settings.admin_display_name
    assert thread[0].created_at == ""


def test_append_keeps_prior_entries_in_order() -> None:
    first = build_admin_reply("<p>one</p>", author_name="Ash", mode="public")
    second = build_user_reply("two", author_name="Sam")

    raw = append_reply(None, first)
    raw = append_reply(raw, second)
    thread = decode_reply_thread(raw)

    assert [entry.body for entry in thread] == ["<p>one</p>", "two"]
    assert thread[0].mode == "public"
    assert thread[1].mode is None
    assert thread[1].created_at


def test_append_to_legacy_value_preserves_it_as_first_entry() -> None:
    raw = append_reply("<p>old reply</p>", build_user_reply("follow-up", author_name="Sam"))

    thread = decode_reply_thread(raw)

    assert [entry.body for entry in thread] == ["<p>old reply</p>", "follow-up"]
    assert thread[0].role == "admin"


def test_encode_keeps_non_ascii_text() -> None:
    raw = encode_reply_thread([build_user_reply("merci beaucoup ✨", author_name="Zoë")])

    assert "✨" in raw
    assert "Zoë" in raw
