from __future__ import annotations

from conftest import auth_headers, create_remote_user, create_user, line_user_id
from inbox.models import AdminPermission, Capability, Channel, DelegationStatus, encode_capabilities

NEW_CHANNEL = {
    "name": "Shop",
    "line_channel_id": "2000000001",
    "channel_secret": "secret",
    "access_token": "token",
}


def test_register_channel_fetches_bot_info(client, owner):
    response = client.post("/api/channels", json=NEW_CHANNEL, headers=auth_headers(owner))

    assert response.status_code == 201, response.text
    assert response.json()["basic_id"] == "@inbox"
    assert response.json()["status"] == "active"


def test_bot_info_failure_does_not_block_registration(client, owner, line_api):
    line_api.fail("/info", 401, "Authentication failed")

    response = client.post("/api/channels", json=NEW_CHANNEL, headers=auth_headers(owner))

    assert response.status_code == 201
    assert response.json()["basic_id"] is None


def test_duplicate_registration_is_409(client, owner):
    headers = auth_headers(owner)
    client.post("/api/channels", json=NEW_CHANNEL, headers=headers)

    response = client.post("/api/channels", json=NEW_CHANNEL, headers=headers)

    assert response.status_code == 409


def test_deleted_channel_is_restored_with_its_data(client, db_session, owner):
    headers = auth_headers(owner)
    created = client.post("/api/channels", json=NEW_CHANNEL, headers=headers).json()
    channel = db_session.get(Channel, created["id"])
    create_remote_user(db_session, channel, line_user_id(1), display_name="Kept")

    deleted = client.delete(f"/api/channels/{created['id']}", headers=headers)
    assert deleted.status_code == 200
    assert client.get("/api/channels", headers=headers).json() == []

    restored = client.post(
        "/api/channels", json={**NEW_CHANNEL, "access_token": "rotated"}, headers=headers
    )

    assert restored.status_code == 201, restored.text
    assert restored.json()["id"] == created["id"]
    db_session.expire_all()
    channel = db_session.get(Channel, created["id"])
    assert channel.access_token == "rotated"
    assert channel.deleted_at is None
    assert [user.display_name for user in channel.remote_users] == ["Kept"]


def test_only_owner_deletes(client, db_session, owner, channel):
    delegate = create_user(db_session, "manager@example.com")
    outsider = create_user(db_session, "outsider@example.com")
    db_session.add(
        AdminPermission(
            owner_id=owner.id,
            admin_id=delegate.id,
            permissions_mask=encode_capabilities([Capability.MANAGE_CHANNEL]),
            status=DelegationStatus.ACTIVE,
        )
    )
    db_session.commit()

    assert client.delete(f"/api/channels/{channel.id}", headers=auth_headers(delegate)).status_code == 403
    assert client.delete(f"/api/channels/{channel.id}", headers=auth_headers(outsider)).status_code == 403
    assert client.delete("/api/channels/999", headers=auth_headers(owner)).status_code == 404
    assert [c["id"] for c in client.get("/api/channels", headers=auth_headers(delegate)).json()] == [channel.id]


def test_auto_reply_rule_crud(client, owner, channel):
    headers = auth_headers(owner)

    created = client.post(
        "/api/auto-replies",
        json={"channel_id": channel.id, "keyword": "hours", "response_content": "9-18 daily", "priority": 2},
        headers=headers,
    )
    bad_regex = client.post(
        "/api/auto-replies",
        json={"keyword": "([", "match_type": "regex", "response_content": "x"},
        headers=headers,
    )
    bad_sticker = client.post(
        "/api/auto-replies",
        json={"keyword": "hi", "response_type": "sticker", "response_content": "446"},
        headers=headers,
    )

    assert created.status_code == 201, created.text
    assert created.json()["match_type"] == "contains"
    assert bad_regex.status_code == 400
    assert bad_sticker.status_code == 400

    listed = client.get("/api/auto-replies", params={"channel_id": channel.id}, headers=headers)
    assert [rule["keyword"] for rule in listed.json()] == ["hours"]

    assert client.delete(f"/api/auto-replies/{created.json()['id']}", headers=headers).status_code == 204
    assert client.get("/api/auto-replies", headers=headers).json() == []


def test_rules_cannot_target_foreign_channels(client, db_session, channel):
    stranger = create_user(db_session, "stranger@example.com")

    response = client.post(
        "/api/auto-replies",
        json={"channel_id": channel.id, "keyword": "x", "response_content": "y"},
        headers=auth_headers(stranger),
    )

    assert response.status_code == 404


def add_manager(db, owner, email, capabilities):
    user = create_user(db, email)
    db.add(
        AdminPermission(
            owner_id=owner.id,
            admin_id=user.id,
            permissions_mask=encode_capabilities(capabilities),
            status=DelegationStatus.ACTIVE,
        )
    )
    db.commit()
    return user


def test_channel_detail_reports_capabilities(client, db_session, owner, channel):
    manager = add_manager(db_session, owner, "manager@example.com", [Capability.MANAGE_CHANNEL, Capability.REPLY])

    as_owner = client.get(f"/api/channels/{channel.id}", headers=auth_headers(owner)).json()
    as_manager = client.get(f"/api/channels/{channel.id}", headers=auth_headers(manager)).json()

    assert as_owner["is_owner"] is True
    assert as_owner["capabilities"] == [capability.value for capability in Capability]
    assert as_manager["is_owner"] is False
    assert as_manager["capabilities"] == ["reply", "manage_channel"]
    assert "access_token" not in as_manager


def test_update_channel_renames_and_deactivates(client, db_session, owner, channel):
    headers = auth_headers(owner)

    renamed = client.put(f"/api/channels/{channel.id}", json={"name": "Support"}, headers=headers)
    deactivated = client.put(f"/api/channels/{channel.id}", json={"status": "inactive"}, headers=headers)
    deleted = client.put(f"/api/channels/{channel.id}", json={"status": "deleted"}, headers=headers)

    assert renamed.status_code == 200, renamed.text
    assert renamed.json()["name"] == "Support"
    assert deactivated.json()["status"] == "inactive"
    assert deleted.status_code == 422
    assert client.post(f"/webhook/{channel.id}", content=b'{"events": []}').status_code == 404

    reactivated = client.put(
        f"/api/channels/{channel.id}", json={"status": "active", "access_token": "rotated"}, headers=headers
    )
    assert reactivated.json()["status"] == "active"
    db_session.expire_all()
    assert db_session.get(Channel, channel.id).access_token == "rotated"


def test_channel_management_needs_manage_channel(client, db_session, owner, channel):
    manager = add_manager(db_session, owner, "manager@example.com", [Capability.MANAGE_CHANNEL])
    agent = add_manager(db_session, owner, "agent@example.com", [Capability.REPLY, Capability.VIEW_ALL])

    allowed = client.put(f"/api/channels/{channel.id}", json={"name": "Managed"}, headers=auth_headers(manager))
    denied = client.put(f"/api/channels/{channel.id}", json={"name": "Nope"}, headers=auth_headers(agent))

    assert allowed.status_code == 200
    assert denied.status_code == 403
    assert "manage_channel" in denied.json()["detail"]
    assert client.get(f"/api/channels/{channel.id}", headers=auth_headers(agent)).status_code == 403
    assert client.post(f"/api/channels/{channel.id}/refresh", headers=auth_headers(agent)).status_code == 403


def test_refresh_reads_bot_info_again(client, owner, channel, line_api):
    headers = auth_headers(owner)
    assert channel.basic_id is None

    refreshed = client.post(f"/api/channels/{channel.id}/refresh", headers=headers)

    assert refreshed.status_code == 200, refreshed.text
    assert refreshed.json()["basic_id"] == "@inbox"
    assert refreshed.json()["picture_url"] == "https://example.com/bot.png"

    line_api.fail("/info", 401, "Authentication failed")
    failed = client.post(f"/api/channels/{channel.id}/refresh", headers=headers)
    assert failed.status_code == 502
    assert failed.json()["success"] is False


def test_inactive_channel_cannot_be_refreshed(client, owner, channel, line_api):
    headers = auth_headers(owner)
    client.put(f"/api/channels/{channel.id}", json={"status": "inactive"}, headers=headers)

    response = client.post(f"/api/channels/{channel.id}/refresh", headers=headers)

    assert response.status_code == 404
    assert line_api.calls("/info") == []
