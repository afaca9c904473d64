"""Tests for mention fan-out and the notification inbox."""

from typing import Any, cast

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Notification, User
from services.mentions import ContentEncoding
from services.notifications import (
    NotificationResourceType,
    NotificationType,
    build_body_preview,
    fan_out_mentions,
    notify_mentions,
)
from services.notifications import fanout as fanout_module


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


async def _notifications_for(session: AsyncSession, user_id: str) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(_eq(Notification.recipient_id, user_id))
        .order_by(cast(Any, Notification.id))
    )
    return list(result.scalars().all())


async def _mention(session: AsyncSession, actor: User, *recipients: User, resource_id: str = "1") -> int:
    return await fan_out_mentions(
        session,
        actor=actor,
        mentioned_ids=[recipient.id for recipient in recipients],
        notification_type=NotificationType.MENTION_POST,
        resource_type=NotificationResourceType.POST,
        resource_id=resource_id,
        body_preview="<p>Hello <strong>there</strong></p>",
    )


def test_body_preview_strips_markup_and_clamps() -> None:
    assert build_body_preview("<p>Hi   <em>you</em>\n\nthere</p>") == "Hi you there"
    assert build_body_preview("<p> </p>") is None
    assert build_body_preview(None) is None
    assert len(build_body_preview("word " * 100) or "") == 200


def test_plain_text_preview_keeps_angle_brackets() -> None:
    assert build_body_preview("I <3 <b>this</b>", ContentEncoding.TEXT) == "I <3 <b>this</b>"
    assert build_body_preview("<p>I like <b>this</b></p>", ContentEncoding.HTML) == "I like this"


@pytest.mark.asyncio
async def test_fan_out_dedupes_and_skips_actor(db_session: AsyncSession, make_user) -> None:
    actor = await make_user(display_name="Ashley", avatar_url="https://cdn.example.com/a.png")
    first = await make_user(display_name="Ben")
    second = await make_user(display_name="Cam")

    written = await fan_out_mentions(
        db_session,
        actor=actor,
        mentioned_ids=[first.id, actor.id, second.id, first.id],
        notification_type=NotificationType.MENTION_COMMENT,
        resource_type=NotificationResourceType.COMMENT,
        resource_id="77",
        body_preview="nice one @ben",
    )

    assert written == 2
    assert await _notifications_for(db_session, actor.id) == []
    stored = await _notifications_for(db_session, first.id)
    assert len(stored) == 1
    assert stored[0].type == "mention_comment"
    assert stored[0].resource_type == "comment"
    assert stored[0].resource_id == "77"
    assert stored[0].actor_name == "Ashley"
    assert stored[0].actor_avatar_url == "https://cdn.example.com/a.png"
    assert stored[0].body_preview == "nice one @ben"
    assert stored[0].read is False


@pytest.mark.asyncio
async def test_fan_out_continues_past_a_failed_row(
    db_session: AsyncSession,
    make_user,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    actor = await make_user(display_name="Ashley")
    recipients = [await make_user(display_name=f"Member {index}") for index in range(3)]

    original_commit = db_session.commit
    calls = {"count": 0}

    async def _flaky_commit() -> None:
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("connection dropped")
        await original_commit()

    monkeypatch.setattr(db_session, "commit", _flaky_commit)

    written = await _mention(db_session, actor, *recipients)

    assert written == 2
    assert len(await _notifications_for(db_session, recipients[0].id)) == 1
    assert await _notifications_for(db_session, recipients[1].id) == []
    assert len(await _notifications_for(db_session, recipients[2].id)) == 1


@pytest.mark.asyncio
async def test_actor_snapshot_survives_profile_change(
    db_session: AsyncSession,
    make_user,
) -> None:
    actor = await make_user(display_name="Original Name")
    recipient = await make_user(display_name="Dee")
    await _mention(db_session, actor, recipient)

    renamed = await db_session.get(User, actor.id)
    assert renamed is not None
    renamed.display_name = "New Name"
    await db_session.commit()

    stored = await _notifications_for(db_session, recipient.id)
    assert stored[0].actor_name == "Original Name"


@pytest.mark.asyncio
async def test_notify_mentions_swallows_pipeline_failures(
    db_session: AsyncSession,
    make_user,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    actor = await make_user(display_name="Ashley")

    async def _broken_extract(*args: Any, **kwargs: Any) -> list[str]:
        raise RuntimeError("directory unavailable")

    monkeypatch.setattr(fanout_module, "extract_mentions", _broken_extract)

    written = await notify_mentions(
        db_session,
        actor=actor,
        content="@somebody hi",
        encoding=ContentEncoding.TEXT,
        notification_type=NotificationType.MENTION_POST,
        resource_type=NotificationResourceType.POST,
        resource_id="1",
    )

    assert written == 0


@pytest.mark.asyncio
async def test_notify_mentions_resolves_text_handles(db_session: AsyncSession, make_user) -> None:
    actor = await make_user(display_name="Ashley", handle="ashley")
    target = await make_user(display_name="Eli", handle="eli")

    written = await notify_mentions(
        db_session,
        actor=actor,
        content="@eli @ashley @missing_person",
        encoding=ContentEncoding.TEXT,
        notification_type=NotificationType.MENTION_POST,
        resource_type=NotificationResourceType.POST,
        resource_id="9",
    )

    assert written == 1
    stored = await _notifications_for(db_session, target.id)
    assert [item.resource_id for item in stored] == ["9"]


@pytest.mark.asyncio
async def test_notifications_require_auth(async_client: AsyncClient) -> None:
    listed = await async_client.get("/api/v1/notifications")
    count = await async_client.get("/api/v1/notifications/unread-count")

    assert listed.status_code == 401
    assert count.status_code == 401


@pytest.mark.asyncio
async def test_inbox_listing_counts_and_pagination(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
) -> None:
    actor = await make_user(display_name="Ashley")
    recipient = await make_user(display_name="Fin")
    for resource_id in ("1", "2", "3"):
        await _mention(db_session, actor, recipient, resource_id=resource_id)
    headers = auth_headers(recipient)

    first_page = await async_client.get(
        "/api/v1/notifications",
        params={"limit": 2},
        headers=headers,
    )
    second_page = await async_client.get(
        "/api/v1/notifications",
        params={"limit": 2, "offset": 2},
        headers=headers,
    )
    count = await async_client.get("/api/v1/notifications/unread-count", headers=headers)

    assert first_page.status_code == 200
    assert [item["resource_id"] for item in first_page.json()] == ["3", "2"]
    assert first_page.headers["X-Next-Offset"] == "2"
    assert [item["resource_id"] for item in second_page.json()] == ["1"]
    assert "X-Next-Offset" not in second_page.headers
    assert count.json() == {"unread_count": 3}
    assert first_page.json()[0]["body_preview"] == "Hello there"


@pytest.mark.asyncio
async def test_mark_read_and_clear_are_scoped_to_recipient(
    async_client: AsyncClient,
    db_session: AsyncSession,
    make_user,
    auth_headers,
) -> None:
    actor = await make_user(display_name="Ashley")
    owner = await make_user(display_name="Gus")
    other = await make_user(display_name="Hal")
    await _mention(db_session, actor, owner, other, resource_id="1")
    await _mention(db_session, actor, owner, resource_id="2")
    owner_ids = [item.id for item in await _notifications_for(db_session, owner.id)]
    other_ids = [item.id for item in await _notifications_for(db_session, other.id)]

    marked = await async_client.post(
        "/api/v1/notifications/read",
        json={"notification_ids": [owner_ids[0], *other_ids]},
        headers=auth_headers(owner),
    )
    assert marked.json() == {"processed_count": 1}

    marked_again = await async_client.post(
        "/api/v1/notifications/read",
        json={"notification_ids": [owner_ids[0]]},
        headers=auth_headers(owner),
    )
    assert marked_again.json() == {"processed_count": 0}

    read_all = await async_client.post(
        "/api/v1/notifications/read-all",
        headers=auth_headers(owner),
    )
    assert read_all.json() == {"processed_count": 1}

    other_count = await async_client.get(
        "/api/v1/notifications/unread-count",
        headers=auth_headers(other),
    )
    assert other_count.json() == {"unread_count": 1}

    cleared = await async_client.delete("/api/v1/notifications", headers=auth_headers(owner))
    assert cleared.json() == {"processed_count": 2}
    assert len(await _notifications_for(db_session, other.id)) == 1


@pytest.mark.asyncio
async def test_mark_read_rejects_empty_id_list(
    async_client: AsyncClient,
    make_user,
    auth_headers,
) -> None:
    user = await make_user(display_name="Ida")

    response = await async_client.post(
        "/api/v1/notifications/read",
        json={"notification_ids": []},
        headers=auth_headers(user),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_text_mentions_keep_typed_markup_in_preview(
    db_session: AsyncSession,
    make_user,
) -> None:
    actor = await make_user(display_name="Ashley", handle="ashley")
    target = await make_user(display_name="Jo", handle="jojo")

    await notify_mentions(
        db_session,
        actor=actor,
        content="@jojo I <3 <b>this</b>",
        encoding=ContentEncoding.TEXT,
        notification_type=NotificationType.MENTION_COMMENT,
        resource_type=NotificationResourceType.COMMENT,
        resource_id="5",
    )

    stored = await _notifications_for(db_session, target.id)
    assert stored[0].body_preview == "@jojo I <3 <b>this</b>"
