from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import auth_headers, create_remote_user, create_user, line_user_id
from inbox.core.clock import utcnow
from inbox.models import (
    AdminPermission,
    Capability,
    Conversation,
    ConversationStatus,
    DelegationStatus,
    Message,
    MessageDirection,
    MessageType,
    encode_capabilities,
)

CAROL = line_user_id(3)


def add_incoming(db, conversation, *, message_type=MessageType.TEXT, content="hello", line_message_id=None, at=None):
    message = Message(
        conversation_id=conversation.id,
        channel_id=conversation.channel_id,
        remote_user_id=conversation.remote_user_id,
        line_message_id=line_message_id,
        direction=MessageDirection.INCOMING,
        message_type=message_type,
        content=content,
        is_read=False,
        created_at=at or utcnow(),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


@pytest.fixture()
def conversation(db_session, channel):
    remote_user = create_remote_user(db_session, channel, CAROL, display_name="Carol")
    conversation = Conversation(
        channel_id=channel.id,
        remote_user_id=remote_user.id,
        status=ConversationStatus.UNREAD,
        unread_count=2,
        last_message_preview="hello",
        last_message_at=utcnow(),
    )
    db_session.add(conversation)
    db_session.commit()
    db_session.refresh(conversation)
    return conversation


@pytest.fixture()
def delegate(db_session, owner, channel):
    user = create_user(db_session, "viewer@example.com", name="Viewer")
    db_session.add(
        AdminPermission(
            owner_id=owner.id,
            admin_id=user.id,
            channel_id=channel.id,
            permissions_mask=encode_capabilities([Capability.VIEW_ALL]),
            status=DelegationStatus.ACTIVE,
        )
    )
    db_session.commit()
    return user


def test_send_pushes_and_stores_message(client, db_session, owner, conversation, line_api):
    response = client.post(
        "/api/messages/send",
        json={"conversation_id": conversation.id, "content": "Hi Carol"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["delivery"] == "push"
    assert body["message"]["source_type"] == "manual"
    assert line_api.calls("/message/push") == [{"to": CAROL, "messages": [{"type": "text", "text": "Hi Carol"}]}]

    db_session.expire_all()
    stored = db_session.get(Conversation, conversation.id)
    assert stored.last_message_preview == "Hi Carol"
    assert stored.unread_count == 2
    assert db_session.get(Message, body["message"]["id"]).sent_by_id == owner.id


def test_send_requires_authentication_and_reply_capability(client, conversation, delegate):
    anonymous = client.post("/api/messages/send", json={"conversation_id": conversation.id, "content": "x"})
    viewer = client.post(
        "/api/messages/send",
        json={"conversation_id": conversation.id, "content": "x"},
        headers=auth_headers(delegate),
    )

    assert anonymous.status_code == 401
    assert viewer.status_code == 403
    assert "reply" in viewer.json()["detail"]


def test_send_validation_and_provider_errors(client, owner, conversation, line_api):
    headers = auth_headers(owner)
    insecure = client.post(
        "/api/messages/send",
        json={"conversation_id": conversation.id, "message_type": "image", "media_url": "http://x.example.com/a.png"},
        headers=headers,
    )
    missing = client.post("/api/messages/send", json={"conversation_id": 999, "content": "x"}, headers=headers)

    line_api.fail("/message/push", 400, "The request body has 1 error(s)")
    rejected = client.post(
        "/api/messages/send", json={"conversation_id": conversation.id, "content": "x"}, headers=headers
    )

    assert insecure.status_code == 400
    assert missing.status_code == 404
    assert rejected.status_code == 502
    assert rejected.json()["detail"] == "The request body has 1 error(s)"
    assert rejected.json()["provider_status"] == 400


def test_list_conversations_and_history(client, db_session, owner, delegate, conversation):
    first = add_incoming(db_session, conversation, content="first", at=utcnow() - timedelta(minutes=2))
    second = add_incoming(db_session, conversation, content="second", at=utcnow() - timedelta(minutes=1))

    listed = client.get("/api/conversations", headers=auth_headers(delegate))
    history = client.get(f"/api/conversations/{conversation.id}/messages", headers=auth_headers(owner))
    older = client.get(
        f"/api/conversations/{conversation.id}/messages",
        params={"before_id": second.id},
        headers=auth_headers(owner),
    )
    filtered = client.get("/api/conversations", params={"status": "read"}, headers=auth_headers(owner))

    assert listed.status_code == 200, listed.text
    assert [item["id"] for item in listed.json()] == [conversation.id]
    assert listed.json()[0]["remote_user"]["display_name"] == "Carol"
    assert [item["content"] for item in history.json()] == ["first", "second"]
    assert [item["id"] for item in older.json()] == [first.id]
    assert filtered.json() == []


def test_outsider_cannot_read_conversation(client, db_session, conversation):
    outsider = create_user(db_session, "outsider@example.com")

    response = client.get(f"/api/conversations/{conversation.id}/messages", headers=auth_headers(outsider))

    assert response.status_code == 403
    assert client.get("/api/conversations", headers=auth_headers(outsider)).json() == []


def test_mark_read_clears_unread(client, db_session, owner, conversation):
    message = add_incoming(db_session, conversation)

    response = client.post(f"/api/conversations/{conversation.id}/read", headers=auth_headers(owner))

    assert response.status_code == 200, response.text
    assert response.json()["unread_count"] == 0
    assert response.json()["status"] == "read"
    db_session.expire_all()
    assert db_session.get(Message, message.id).is_read is True


def test_media_content_is_fetched_from_line(client, db_session, owner, conversation, line_api):
    image = add_incoming(db_session, conversation, message_type=MessageType.IMAGE, content=None, line_message_id="555")
    text = add_incoming(db_session, conversation, content="hi", line_message_id="556")

    response = client.get(f"/api/messages/{image.id}/content", headers=auth_headers(owner))
    not_media = client.get(f"/api/messages/{text.id}/content", headers=auth_headers(owner))

    assert response.status_code == 200
    assert response.content == b"\xff\xd8binary"
    assert response.headers["content-type"] == "image/jpeg"
    assert line_api.requests[-1].url.path.endswith("/message/555/content")
    assert not_media.status_code == 404
