from __future__ import annotations

import pytest
from sqlalchemy import func, select

from conftest import create_remote_user, line_user_id
from inbox.models import (
    Conversation,
    ConversationStatus,
    FollowStatus,
    RemoteSourceType,
    RemoteUser,
)
from inbox.schemas.webhook import LineSource
from inbox.services import resolver


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.mark.anyio("asyncio")
async def test_resolve_user_creates_row_from_profile(db_session, channel, line_api, line_client):
    uid = line_user_id(1)
    line_api.profiles[uid] = {
        "displayName": "Alice",
        "pictureUrl": "https://example.com/alice.png",
        "language": "en",
    }

    remote_user = await resolver.resolve_user(db_session, channel, uid, line_client)

    assert remote_user.display_name == "Alice"
    assert remote_user.picture_url == "https://example.com/alice.png"
    assert remote_user.follow_status == FollowStatus.FOLLOWING
    assert remote_user.source_type == RemoteSourceType.USER


@pytest.mark.anyio("asyncio")
async def test_failed_profile_fetch_uses_placeholder_and_is_idempotent(
    db_session, channel, line_client
):
    uid = line_user_id(2)

    first = await resolver.resolve_user(db_session, channel, uid, line_client)
    second = await resolver.resolve_user(db_session, channel, uid, line_client)

    assert first.id == second.id
    assert first.display_name == resolver.placeholder_name(uid)
    assert _count(db_session, RemoteUser) == 1


@pytest.mark.anyio("asyncio")
async def test_placeholder_name_refreshed_when_profile_appears(db_session, channel, line_api, line_client):
    uid = line_user_id(3)
    create_remote_user(
        db_session,
        channel,
        uid,
        display_name=resolver.placeholder_name(uid),
        follow_status=FollowStatus.UNKNOWN,
    )
    line_api.profiles[uid] = {"displayName": "Bob"}

    remote_user = await resolver.resolve_user(db_session, channel, uid, line_client)

    assert remote_user.display_name == "Bob"
    assert remote_user.follow_status == FollowStatus.FOLLOWING


@pytest.mark.anyio("asyncio")
async def test_profile_failure_never_clears_stored_fields(db_session, channel, line_api, line_client):
    uid = line_user_id(4)
    create_remote_user(
        db_session,
        channel,
        uid,
        display_name="Unknown",
        picture_url="https://example.com/kept.png",
    )
    line_api.fail(f"/profile/{uid}", 500, "Internal error")

    remote_user = await resolver.resolve_user(db_session, channel, uid, line_client)

    assert remote_user.picture_url == "https://example.com/kept.png"
    assert remote_user.display_name == "Unknown"


@pytest.mark.anyio("asyncio")
async def test_lost_insert_race_returns_existing_row(db_session, channel, line_client, monkeypatch):
    uid = line_user_id(5)
    existing = create_remote_user(db_session, channel, uid, display_name="Winner")
    real_find = resolver.find_remote_user
    lookups = {"count": 0}

    def racing_find(db, channel_id, line_id):
        lookups["count"] += 1
        if lookups["count"] == 1:
            return None
        return real_find(db, channel_id, line_id)

    monkeypatch.setattr(resolver, "find_remote_user", racing_find)

    remote_user = await resolver.resolve_user(db_session, channel, uid, line_client)

    assert remote_user.id == existing.id
    assert _count(db_session, RemoteUser) == 1


@pytest.mark.anyio("asyncio")
async def test_resolve_conversation_creates_once(db_session, channel):
    remote_user = create_remote_user(db_session, channel, line_user_id(6))

    conversation, created = await resolver.resolve_conversation(db_session, channel, remote_user)
    again, created_again = await resolver.resolve_conversation(db_session, channel, remote_user)

    assert created is True
    assert created_again is False
    assert again.id == conversation.id
    assert conversation.status == ConversationStatus.UNREAD
    assert conversation.unread_count == 1
    assert _count(db_session, Conversation) == 1


@pytest.mark.anyio("asyncio")
async def test_group_source_resolves_to_group_entry(db_session, channel, line_client):
    source = LineSource.model_validate({"type": "group", "groupId": "C" + "a" * 32, "userId": line_user_id(7)})

    entry = await resolver.resolve_chat(db_session, channel, source, line_client)

    assert entry.line_user_id == "C" + "a" * 32
    assert entry.source_type == RemoteSourceType.GROUP
    assert entry.display_name == "Study Group"
    assert entry.member_count == 3


@pytest.mark.anyio("asyncio")
async def test_sender_info_for_group_member(line_client):
    source = LineSource.model_validate({"type": "group", "groupId": "C1", "userId": line_user_id(8)})

    info = await resolver.sender_info(line_client, source)

    assert info == {"user_id": line_user_id(8), "display_name": "Member", "picture_url": None}
