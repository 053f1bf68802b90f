from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import auth_headers, create_user
from inbox.core.clock import utcnow
from inbox.models import AdminPermission


@pytest.fixture()
def member(db_session):
    return create_user(db_session, "member@example.com", name="Member")


def invite(client, owner, **body):
    body.setdefault("capabilities", ["reply", "view_all"])
    return client.post("/api/team/invite", json=body, headers=auth_headers(owner))


def test_invite_accept_and_revoke(client, owner, channel, member):
    created = invite(client, owner, channel_id=channel.id)
    assert created.status_code == 201, created.text
    token = created.json()["invite_token"]
    assert created.json()["status"] == "pending"

    inspected = client.get(f"/api/team/invite/{token}", headers=auth_headers(member))
    assert inspected.status_code == 200
    assert inspected.json()["invite_token"] is None
    assert inspected.json()["capabilities"] == ["reply", "view_all"]

    accepted = client.post(f"/api/team/accept/{token}", headers=auth_headers(member))
    assert accepted.status_code == 200, accepted.text
    assert accepted.json()["status"] == "active"
    assert accepted.json()["admin_id"] == member.id

    channels = client.get("/api/channels", headers=auth_headers(member)).json()
    assert [item["id"] for item in channels] == [channel.id]

    team = client.get("/api/team", headers=auth_headers(owner)).json()
    assert [grant["status"] for grant in team] == ["active"]

    revoked = client.delete(f"/api/team/{accepted.json()['id']}", headers=auth_headers(owner))
    assert revoked.json()["status"] == "revoked"
    assert client.get("/api/channels", headers=auth_headers(member)).json() == []


def test_accept_errors(client, db_session, owner, member):
    unknown = client.post("/api/team/accept/does-not-exist", headers=auth_headers(member))
    own = client.post(f"/api/team/accept/{invite(client, owner).json()['invite_token']}", headers=auth_headers(owner))

    assert unknown.status_code == 404
    assert own.status_code == 400


def test_expired_invitation_is_410(client, db_session, owner, member):
    created = invite(client, owner).json()
    grant = db_session.get(AdminPermission, created["id"])
    grant.invite_expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    response = client.post(f"/api/team/accept/{created['invite_token']}", headers=auth_headers(member))
    team = client.get("/api/team", headers=auth_headers(owner)).json()

    assert response.status_code == 410
    assert team[0]["status"] == "expired"


def test_invitation_bound_to_email_is_403_for_others(client, db_session, owner, member):
    other = create_user(db_session, "other@example.com")
    created = invite(client, owner, email="Member@Example.com").json()

    response = client.post(f"/api/team/accept/{created['invite_token']}", headers=auth_headers(other))

    assert created["admin_id"] == member.id
    assert response.status_code == 403


def test_existing_member_is_rejected_and_invitation_removed(client, db_session, owner, member):
    first = invite(client, owner).json()
    client.post(f"/api/team/accept/{first['invite_token']}", headers=auth_headers(member))
    second = invite(client, owner).json()

    response = client.post(f"/api/team/accept/{second['invite_token']}", headers=auth_headers(member))

    assert response.status_code == 400
    db_session.expire_all()
    assert db_session.get(AdminPermission, second["id"]) is None


def test_invite_validation(client, owner):
    assert invite(client, owner, capabilities=[]).status_code == 422
    assert invite(client, owner, channel_id=999).status_code == 404
    assert invite(client, owner, email="owner@example.com").status_code == 400
