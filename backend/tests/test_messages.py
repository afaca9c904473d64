"""Tests for the member-to-admin message inbox."""

from datetime import datetime, timedelta, timezone
from typing import Any, cast

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Message, Notification, Post
from services import messages as messages_service
from services.errors import InvalidMessageError, ReplyConflictError
from services.messages import (
    MessageEvent,
    MessageStatus,
    cooldown_remaining_minutes,
    ensure_aware,
    load_message,
    reply_to_message,
    send_message,
    transition,
)
from services.replies import build_user_reply, decode_reply_thread


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


async def _send(async_client: AsyncClient, headers: dict[str, str], **payload: Any) -> dict:
    payload.setdefault("body", "Hello from a member")
    response = await async_client.post("/api/v1/messages", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.parametrize(
    ("current", "event", "expected"),
    [
        (MessageStatus.UNREAD, MessageEvent.MARK_READ, MessageStatus.READ),
        (MessageStatus.READ, MessageEvent.MARK_READ, MessageStatus.READ),
        (MessageStatus.ADDRESSED, MessageEvent.MARK_READ, MessageStatus.ADDRESSED),
        (MessageStatus.UNREAD, MessageEvent.MARK_ADDRESSED, MessageStatus.ADDRESSED),
        (MessageStatus.READ, MessageEvent.ADMIN_REPLY, MessageStatus.ADDRESSED),
        (MessageStatus.ADDRESSED, MessageEvent.SENDER_REPLY, MessageStatus.UNREAD),
        (MessageStatus.READ, MessageEvent.SENDER_REPLY, MessageStatus.UNREAD),
    ],
)
def test_transition_table(
    current: MessageStatus,
    event: MessageEvent,
    expected: MessageStatus,
) -> None:
    assert transition(current, event) is expected


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [
        (timedelta(0), 60),
        (timedelta(milliseconds=1), 60),
        (timedelta(minutes=30, seconds=30), 30),
        (timedelta(minutes=59), 1),
        (timedelta(minutes=59, seconds=59, milliseconds=999), 1),
        (timedelta(hours=1), None),
        (timedelta(hours=5), None),
    ],
)
def test_cooldown_remaining_minutes(elapsed: timedelta, expected: int | None) -> None:
    last_sent_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    assert (
        cooldown_remaining_minutes(
            last_sent_at,
            last_sent_at + elapsed,
            cooldown_seconds=3600,
        )
        == expected
    )


def test_cooldown_treats_naive_timestamps_as_utc() -> None:
    naive = datetime(2026, 3, 1, 12, 0)
    aware_now = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)

    assert cooldown_remaining_minutes(naive, aware_now, cooldown_seconds=3600) == 30


@pytest.mark.asyncio
async def test_send_message_enforces_cooldown(db_session: AsyncSession, make_user) -> None:
    sender = await make_user(display_name="Nia")

    first = await send_message(db_session, sender, "  First note  ")
    assert first.message is not None
    assert first.message.body == "First note"
    assert first.message.status == MessageStatus.UNREAD.value
    sent_at = ensure_aware(first.message.created_at)

    blocked = await send_message(
        db_session,
        sender,
        "Second note",
        now=sent_at + timedelta(minutes=59, seconds=30),
    )
    assert blocked.is_rate_limited
    assert blocked.remaining_minutes == 1

    allowed = await send_message(
        db_session,
        sender,
        "Second note",
        now=sent_at + timedelta(hours=1),
    )
    assert allowed.message is not None


@pytest.mark.asyncio
async def test_send_message_validates_body(db_session: AsyncSession, make_user) -> None:
    sender = await make_user(display_name="Omar")

    with pytest.raises(InvalidMessageError):
        await send_message(db_session, sender, "   ")
    with pytest.raises(InvalidMessageError):
        await send_message(db_session, sender, "x" * 2001)


@pytest.mark.asyncio
async def test_anonymous_message_hides_sender_snapshot(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Pia", avatar_url="https://cdn.example.com/p.png")

    created = await _send(async_client, auth_headers(sender), anonymous=True)
    admin_view = await async_client.get("/api/v1/messages", headers=auth_headers(admin))

    assert created["sender_name"] is None
    assert created["sender_avatar_url"] is None
    assert created["sender_id"] == sender.id
    assert admin_view.json()[0]["sender_id"] is None
    assert admin_view.json()[0]["is_anonymous"] is True


@pytest.mark.asyncio
async def test_second_message_within_hour_is_rate_limited(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    sender = await make_user(display_name="Quinn")
    headers = auth_headers(sender)

    await _send(async_client, headers)
    second = await async_client.post(
        "/api/v1/messages",
        json={"body": "Another one"},
        headers=headers,
    )
    cooldown = await async_client.get("/api/v1/messages/cooldown", headers=headers)

    assert second.status_code == 429
    assert second.json()["remaining_minutes"] == 60
    assert second.headers["Retry-After"] == "3600"
    assert cooldown.json() == {"can_send": False, "remaining_minutes": 60}


@pytest.mark.asyncio
async def test_status_flow_through_admin_and_sender_replies(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Rae")
    admin_headers = auth_headers(admin)
    sender_headers = auth_headers(sender)
    message_id = (await _send(async_client, sender_headers))["id"]
    base = f"/api/v1/messages/{message_id}"

    read = await async_client.post(f"{base}/read", headers=admin_headers)
    assert read.json()["status"] == "read"

    addressed = await async_client.post(f"{base}/addressed", headers=admin_headers)
    assert addressed.json()["status"] == "addressed"

    read_again = await async_client.post(f"{base}/read", headers=admin_headers)
    assert read_again.json()["status"] == "addressed"

    admin_reply = await async_client.post(
        f"{base}/replies",
        json={"body": "<p>We hear you</p><script>alert(1)</script>"},
        headers=admin_headers,
    )
    assert admin_reply.status_code == 201
    assert admin_reply.json()["message"]["status"] == "addressed"
    assert admin_reply.json()["entry"]["body"] == "<p>We hear you</p>"
    assert admin_reply.json()["entry"]["mode"] == "private"
    assert admin_reply.json()["mirrored_post_id"] is None

    sender_reply = await async_client.post(
        f"{base}/replies",
        json={"body": "Thank you!"},
        headers=sender_headers,
    )
    assert sender_reply.status_code == 201
    body = sender_reply.json()
    assert body["message"]["status"] == "unread"
    assert [entry["role"] for entry in body["message"]["replies"]] == ["admin", "user"]
    assert body["entry"]["author_name"] == "Rae"
    assert body["entry"]["mode"] is None


@pytest.mark.asyncio
async def test_reply_authorization_and_validation(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Sol")
    stranger = await make_user(display_name="Tao")
    message_id = (await _send(async_client, auth_headers(sender)))["id"]
    base = f"/api/v1/messages/{message_id}"

    stranger_reply = await async_client.post(
        f"{base}/replies",
        json={"body": "Not mine"},
        headers=auth_headers(stranger),
    )
    member_read = await async_client.post(f"{base}/read", headers=auth_headers(sender))
    empty_reply = await async_client.post(
        f"{base}/replies",
        json={"body": "<p>   </p>"},
        headers=auth_headers(admin),
    )
    missing = await async_client.post(
        "/api/v1/messages/does-not-exist/read",
        headers=auth_headers(admin),
    )

    assert stranger_reply.status_code == 403
    assert member_read.status_code == 403
    assert empty_reply.status_code == 422
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_public_admin_reply_is_mirrored_to_feed(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Uri")
    message_id = (
        await _send(async_client, auth_headers(sender), body="How do I begin?", anonymous=True)
    )["id"]

    response = await async_client.post(
        f"/api/v1/messages/{message_id}/replies",
        json={"body": "<p>Start small.</p>", "mode": "public"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    post_id = response.json()["mirrored_post_id"]
    assert post_id is not None

    result = await db_session.execute(select(Post).where(_eq(Post.id, post_id)))
    post = result.scalar_one()
    assert post.tag == "ask"
    assert post.type == "article"
    assert post.anonymous_question == "How do I begin?"
    assert post.source_message_id == message_id
    assert post.body == "<p>Start small.</p>"


@pytest.mark.asyncio
async def test_anonymous_sender_reply_is_labelled_anonymous(
    db_session: AsyncSession,
    make_user,
) -> None:
    sender = await make_user(display_name="Vera")
    sent = await send_message(db_session, sender, "Quiet question", anonymous=True)
    assert sent.message is not None

    outcome = await reply_to_message(db_session, sender, sent.message.id, "One more thing")

    assert outcome.entry.author_name == "Anonymous"
    assert outcome.entry.role == "user"


@pytest.mark.asyncio
async def test_reply_mentions_notify_mentioned_members(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Wes", handle="wes")
    friend = await make_user(display_name="Yara", handle="yara")
    message_id = (await _send(async_client, auth_headers(sender)))["id"]

    admin_reply = await async_client.post(
        f"/api/v1/messages/{message_id}/replies",
        json={"body": "<p>Ask @yara, she knows. cc @wes</p>"},
        headers=auth_headers(admin),
    )
    sender_reply = await async_client.post(
        f"/api/v1/messages/{message_id}/replies",
        json={"body": "Thanks! @yara see above, @nobody_here"},
        headers=auth_headers(sender),
    )

    assert admin_reply.status_code == 201
    assert 'class="mention"' in admin_reply.json()["entry"]["body"]
    assert sender_reply.status_code == 201

    result = await db_session.execute(
        select(Notification).order_by(cast(Any, Notification.id))
    )
    notifications = result.scalars().all()
    assert [(item.recipient_id, item.actor_id) for item in notifications] == [
        (friend.id, admin.id),
        (sender.id, admin.id),
        (friend.id, sender.id),
    ]
    assert {item.type for item in notifications} == {"mention_reply"}
    assert {item.resource_type for item in notifications} == {"message"}
    assert {item.resource_id for item in notifications} == {message_id}
    assert notifications[0].body_preview == "Ask @yara, she knows. cc @wes"


@pytest.mark.asyncio
async def test_stale_reply_append_retries_without_losing_entries(
    session_maker,
    make_user,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Zed")

    async with session_maker() as session:
        sent = await send_message(session, sender, "Original")
        assert sent.message is not None
        message_id = sent.message.id

    async with session_maker() as stale_session, session_maker() as fresh_session:
        stale_message = await load_message(stale_session, message_id)
        assert stale_message.version == 0
        await stale_session.commit()

        await reply_to_message(fresh_session, admin, message_id, "<p>Admin answer</p>")

        updated = await messages_service._append_entry(
            stale_session,
            stale_message,
            build_user_reply("Sender follow-up", author_name="Zed"),
            MessageEvent.SENDER_REPLY,
        )

    thread = decode_reply_thread(updated.reply_body)
    assert [entry.body for entry in thread] == ["<p>Admin answer</p>", "Sender follow-up"]
    assert updated.version == 2
    assert updated.status == MessageStatus.UNREAD.value


@pytest.mark.asyncio
async def test_reply_append_gives_up_after_repeated_conflicts(
    db_session: AsyncSession,
    make_user,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sender = await make_user(display_name="Ada")
    sent = await send_message(db_session, sender, "Original")
    assert sent.message is not None
    stale = Message(
        id=sent.message.id,
        sender_id=sender.id,
        body="Original",
        status=MessageStatus.UNREAD.value,
        version=99,
    )

    async def _stale_loader(session: AsyncSession, message_id: str) -> Message:
        return stale

    monkeypatch.setattr(messages_service, "load_message", _stale_loader)

    with pytest.raises(ReplyConflictError):
        await messages_service._append_entry(
            db_session,
            stale,
            build_user_reply("lost", author_name="Ada"),
            MessageEvent.SENDER_REPLY,
        )


@pytest.mark.asyncio
async def test_listing_and_deleting_messages(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    first_sender = await make_user(display_name="Bea")
    second_sender = await make_user(display_name="Cy")
    first_id = (await _send(async_client, auth_headers(first_sender)))["id"]
    second_id = (await _send(async_client, auth_headers(second_sender)))["id"]

    own = await async_client.get("/api/v1/messages", headers=auth_headers(first_sender))
    everything = await async_client.get("/api/v1/messages", headers=auth_headers(admin))
    await async_client.post(f"/api/v1/messages/{first_id}/read", headers=auth_headers(admin))
    unread_only = await async_client.get(
        "/api/v1/messages",
        params={"status": "unread"},
        headers=auth_headers(admin),
    )

    assert [item["id"] for item in own.json()] == [first_id]
    assert {item["id"] for item in everything.json()} == {first_id, second_id}
    assert [item["id"] for item in unread_only.json()] == [second_id]

    forbidden = await async_client.delete(
        f"/api/v1/messages/{first_id}",
        headers=auth_headers(second_sender),
    )
    by_sender = await async_client.delete(
        f"/api/v1/messages/{first_id}",
        headers=auth_headers(first_sender),
    )
    by_admin = await async_client.delete(
        f"/api/v1/messages/{second_id}",
        headers=auth_headers(admin),
    )
    remaining = await async_client.get("/api/v1/messages", headers=auth_headers(admin))

    assert forbidden.status_code == 403
    assert by_sender.status_code == 200
    assert by_admin.status_code == 200
    assert remaining.json() == []


@pytest.mark.asyncio
async def test_anonymous_sender_mentions_do_not_reveal_identity(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
) -> None:
    sender = await make_user(
        display_name="Secret Pia",
        handle="pia",
        avatar_url="https://cdn.example.com/p.png",
    )
    friend = await make_user(display_name="Yara", handle="yara")
    message_id = (await _send(async_client, auth_headers(sender), anonymous=True))["id"]

    reply = await async_client.post(
        f"/api/v1/messages/{message_id}/replies",
        json={"body": "thanks @yara"},
        headers=auth_headers(sender),
    )
    inbox = await async_client.get("/api/v1/notifications", headers=auth_headers(friend))

    assert reply.status_code == 201
    assert reply.json()["entry"]["author_name"] == "Anonymous"

    result = await db_session.execute(
        select(Notification).where(_eq(Notification.recipient_id, friend.id))
    )
    stored = result.scalar_one()
    assert stored.actor_id is None
    assert stored.actor_name == "Anonymous"
    assert stored.actor_avatar_url is None

    payload = inbox.json()
    assert len(payload) == 1
    assert payload[0]["actor_id"] is None
    assert payload[0]["actor_name"] == "Anonymous"
    assert "Secret Pia" not in inbox.text
    assert sender.id not in inbox.text


@pytest.mark.asyncio
async def test_failed_mirrored_post_leaves_message_untouched(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    admin = await make_user(display_name="Ashley", is_admin=True)
    sender = await make_user(display_name="Zia")
    message_id = (await _send(async_client, auth_headers(sender), body="Is it worth it?"))["id"]

    def _unstorable_post(message: Message, entry: Any, **author: Any) -> Post:
        return Post(type=None, body=entry.body, tag="ask", source_message_id=message.id, **author)

    monkeypatch.setattr(messages_service, "_build_reply_post", _unstorable_post)

    response = await async_client.post(
        f"/api/v1/messages/{message_id}/replies",
        json={"body": "<p>Yes.</p>", "mode": "public"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to reply to message"

    stored = await db_session.get(Message, message_id)
    assert stored is not None
    assert stored.reply_body is None
    assert stored.status == "unread"
    assert stored.version == 0
    posts = await db_session.execute(select(Post))
    assert posts.scalars().all() == []
