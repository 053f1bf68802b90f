from __future__ import annotations

import httpx
import pytest
from sqlalchemy import func, select

from conftest import create_remote_user, line_user_id
from inbox.core.errors import ConflictError, ValidationError
from inbox.models import (
    Broadcast,
    BroadcastRecipient,
    BroadcastStatus,
    BroadcastType,
    Conversation,
    FollowStatus,
    RecipientStatus,
    RemoteSourceType,
    Tag,
)
from inbox.schemas import BroadcastCreate, BroadcastSendRequest
from inbox.services import broadcast as broadcasts


async def no_sleep(seconds: float) -> None:
    return None


def add_followers(db, channel, count: int, start: int = 1):
    return [
        create_remote_user(
            db, channel, line_user_id(index), display_name=f"User {index}", follow_status=FollowStatus.FOLLOWING
        )
        for index in range(start, start + count)
    ]


def text_request(channel, **fields) -> BroadcastSendRequest:
    return BroadcastSendRequest(channel_id=channel.id, message_type="text", content="Sale today", **fields)


def make_draft(db, channel, request=None) -> Broadcast:
    request = request or text_request(channel, delay_ms=0)
    return broadcasts.create_broadcast(db, channel, request, broadcasts.build_broadcast_payloads(request))


def test_final_status_rules():
    assert broadcasts.final_status(0, 0) == BroadcastStatus.COMPLETED
    assert broadcasts.final_status(5, 3) == BroadcastStatus.COMPLETED
    assert broadcasts.final_status(0, 3) == BroadcastStatus.FAILED


def test_payloads_from_messages_list_and_limits(channel):
    request = BroadcastSendRequest(
        channel_id=channel.id,
        messages=[{"type": "text", "text": "one"}, {"type": "sticker", "package_id": "1", "sticker_id": "2"}],
    )
    too_many = BroadcastSendRequest(channel_id=channel.id, messages=[{"type": "text", "text": "x"}] * 6)

    payloads = broadcasts.build_broadcast_payloads(request)

    assert [payload.type for payload in payloads] == ["text", "sticker"]
    with pytest.raises(ValidationError):
        broadcasts.build_broadcast_payloads(too_many)


def test_flex_content_may_be_a_json_string(channel):
    request = BroadcastSendRequest(
        channel_id=channel.id, message_type="flex", content='{"type": "bubble"}', alt_text="Promo"
    )

    (payload,) = broadcasts.build_broadcast_payloads(request)

    assert payload.to_line() == {"type": "flex", "altText": "Promo", "contents": {"type": "bubble"}}


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"message_type": "text", "content": ""},
        {"message_type": "flex", "content": "{broken"},
        {"message_type": "image", "content": "http://cdn.example.com/a.png"},
    ],
)
def test_unusable_content_is_rejected(channel, fields):
    with pytest.raises(ValidationError):
        broadcasts.build_broadcast_payloads(BroadcastSendRequest(channel_id=channel.id, **fields))


def test_push_audience_filters_and_orders(db_session, channel):
    followers = add_followers(db_session, channel, 3)
    create_remote_user(db_session, channel, line_user_id(50), follow_status=FollowStatus.UNFOLLOWED)
    create_remote_user(db_session, channel, line_user_id(51), follow_status=FollowStatus.BLOCKED)
    create_remote_user(db_session, channel, "C" + "a" * 32, source_type=RemoteSourceType.GROUP)
    create_remote_user(db_session, channel, "not-a-line-id")
    unknown = create_remote_user(db_session, channel, line_user_id(52), follow_status=FollowStatus.UNKNOWN)

    audience = broadcasts.select_push_audience(db_session, channel)
    limited = broadcasts.select_push_audience(db_session, channel, limit=2)

    assert [r.line_user_id for r in audience] == [u.line_user_id for u in followers] + [unknown.line_user_id]
    assert [r.line_user_id for r in limited] == [u.line_user_id for u in followers[:2]]


def test_tagged_audience(db_session, channel):
    tagged, untagged = add_followers(db_session, channel, 2)
    tag = Tag(channel_id=channel.id, name="vip")
    conversations = [Conversation(channel_id=channel.id, remote_user_id=u.id) for u in (tagged, untagged)]
    conversations[0].tags.append(tag)
    db_session.add_all([tag, *conversations])
    db_session.commit()

    audience = broadcasts.select_push_audience(db_session, channel, tag_ids=[tag.id])

    assert [r.line_user_id for r in audience] == [tagged.line_user_id]


@pytest.mark.anyio("asyncio")
async def test_push_run_batches_every_recipient(db_session, channel, line_api, line_client):
    add_followers(db_session, channel, 7)
    draft = make_draft(db_session, channel, text_request(channel, delay_ms=250))
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    result = await broadcasts.run_broadcast(db_session, line_client, draft, batch_size=3, sleep=record_sleep)

    calls = line_api.calls("/message/multicast")
    assert [len(call["to"]) for call in calls] == [3, 3, 1]
    assert calls[0]["messages"] == [{"type": "text", "text": "Sale today"}]
    assert delays == [0.25, 0.25]
    assert result.status == BroadcastStatus.COMPLETED
    assert (result.target_count, result.sent_count, result.failed_count) == (7, 7, 0)
    statuses = db_session.execute(select(BroadcastRecipient.status)).scalars().all()
    assert statuses == [RecipientStatus.SENT] * 7


@pytest.mark.anyio("asyncio")
async def test_every_batch_rejected_marks_run_failed(db_session, channel, line_api, line_client):
    add_followers(db_session, channel, 4)
    line_api.fail("/message/multicast", 429, "You have reached your monthly limit.")
    draft = make_draft(db_session, channel)

    result = await broadcasts.run_broadcast(db_session, line_client, draft, batch_size=2, sleep=no_sleep)

    assert result.status == BroadcastStatus.FAILED
    assert (result.sent_count, result.failed_count) == (0, 4)
    assert result.error_message == "You have reached your monthly limit."


@pytest.mark.anyio("asyncio")
async def test_one_rejected_batch_does_not_stop_the_run(db_session, channel, line_api, line_client):
    add_followers(db_session, channel, 5)
    seen = {"calls": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        seen["calls"] += 1
        if seen["calls"] == 2:
            return httpx.Response(400, json={"message": "Invalid user id"})
        return httpx.Response(200, json={})

    line_api.respond("/message/multicast", flaky)
    draft = make_draft(db_session, channel)

    result = await broadcasts.run_broadcast(db_session, line_client, draft, batch_size=2, sleep=no_sleep)

    assert result.status == BroadcastStatus.COMPLETED
    assert (result.sent_count, result.failed_count) == (3, 2)
    assert result.sent_count + result.failed_count == result.target_count
    failed = db_session.execute(
        select(BroadcastRecipient).where(BroadcastRecipient.status == RecipientStatus.FAILED)
    ).scalars().all()
    assert [row.error_message for row in failed] == ["Invalid user id", "Invalid user id"]


@pytest.mark.anyio("asyncio")
async def test_official_broadcast_reports_follower_estimate(db_session, channel, line_api, line_client):
    add_followers(db_session, channel, 3)
    create_remote_user(db_session, channel, line_user_id(60), follow_status=FollowStatus.UNFOLLOWED)
    request = text_request(channel, broadcast_type=BroadcastType.OFFICIAL)
    draft = make_draft(db_session, channel, request)

    result = await broadcasts.run_broadcast(db_session, line_client, draft, sleep=no_sleep)

    assert len(line_api.calls("/message/broadcast")) == 1
    assert result.status == BroadcastStatus.COMPLETED
    assert (result.target_count, result.sent_count) == (3, 3)


@pytest.mark.anyio("asyncio")
async def test_send_now_without_recipients_writes_nothing(db_session, channel, line_client):
    with pytest.raises(ValidationError):
        await broadcasts.send_now(db_session, line_client, channel, text_request(channel), sleep=no_sleep)

    assert db_session.execute(select(func.count()).select_from(Broadcast)).scalar_one() == 0


@pytest.mark.anyio("asyncio")
async def test_send_now_honours_limit(db_session, channel, line_api, line_client, owner):
    add_followers(db_session, channel, 4)

    result = await broadcasts.send_now(
        db_session, line_client, channel, text_request(channel, limit=2), user=owner, sleep=no_sleep
    )

    assert result.target_count == 2
    assert result.created_by_id == owner.id
    assert line_api.calls("/message/multicast")[0]["to"] == [line_user_id(1), line_user_id(2)]


def test_prepare_send_guards_state(db_session, channel):
    draft = make_draft(db_session, channel)

    with pytest.raises(ValidationError):
        broadcasts.prepare_send(db_session, draft)

    add_followers(db_session, channel, 1)
    assert len(broadcasts.prepare_send(db_session, draft)) == 1

    draft.status = BroadcastStatus.COMPLETED
    db_session.commit()
    with pytest.raises(ValidationError):
        broadcasts.prepare_send(db_session, draft)


def test_tagged_broadcast_requires_tags(db_session, channel):
    request = BroadcastCreate(channel_id=channel.id, message_type="text", content="x", target_type="tagged")

    with pytest.raises(ValidationError):
        broadcasts.create_broadcast(db_session, channel, request, broadcasts.build_broadcast_payloads(request))


@pytest.mark.anyio("asyncio")
async def test_runner_completes_persisted_broadcast(session_factory, db_session, channel, client_factory, line_api):
    add_followers(db_session, channel, 2)
    draft = make_draft(db_session, channel)
    runner = broadcasts.BroadcastRunner(session_factory, client_factory, sleep=no_sleep)

    await runner.run(draft.id)

    db_session.expire_all()
    stored = db_session.get(Broadcast, draft.id)
    assert stored.status == BroadcastStatus.COMPLETED
    assert stored.sent_count == 2
    assert len(line_api.calls("/message/multicast")) == 1


def test_second_send_request_cannot_claim_the_campaign(session_factory, db_session, channel):
    add_followers(db_session, channel, 3)
    draft = make_draft(db_session, channel)
    other = session_factory()
    try:
        # loaded before the first request claimed it, so it still reads as draft
        stale = other.get(Broadcast, draft.id)

        assert len(broadcasts.prepare_send(db_session, draft)) == 3
        assert draft.status == BroadcastStatus.SENDING
        with pytest.raises(ValidationError):
            broadcasts.prepare_send(other, stale)
    finally:
        other.close()


@pytest.mark.anyio("asyncio")
async def test_started_campaign_is_never_run_twice(session_factory, db_session, channel, client_factory, line_api):
    add_followers(db_session, channel, 3)
    draft = make_draft(db_session, channel)
    broadcasts.prepare_send(db_session, draft)
    runner = broadcasts.BroadcastRunner(session_factory, client_factory, sleep=no_sleep)

    await runner.run(draft.id)
    await runner.run(draft.id)

    db_session.expire_all()
    stored = db_session.get(Broadcast, draft.id)
    assert len(line_api.calls("/message/multicast")) == 1
    assert stored.status == BroadcastStatus.COMPLETED
    assert (stored.target_count, stored.sent_count, stored.failed_count) == (3, 3, 0)
    rows = db_session.execute(select(func.count()).select_from(BroadcastRecipient)).scalar_one()
    assert rows == 3


@pytest.mark.anyio("asyncio")
async def test_run_refuses_a_started_campaign(db_session, channel, line_api, line_client):
    add_followers(db_session, channel, 2)
    draft = make_draft(db_session, channel)
    await broadcasts.run_broadcast(db_session, line_client, draft, sleep=no_sleep)

    with pytest.raises(ConflictError):
        await broadcasts.run_broadcast(db_session, line_client, draft, sleep=no_sleep)

    db_session.refresh(draft)
    assert draft.sent_count == 2
    assert len(line_api.calls("/message/multicast")) == 1
