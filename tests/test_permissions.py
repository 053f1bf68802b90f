from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import create_channel, create_user
from inbox.core.clock import ensure_utc, utcnow
from inbox.core.errors import AuthorizationError, ExpiredError, NotFoundError, ValidationError
from inbox.models import (
    AdminPermission,
    Capability,
    ChannelStatus,
    DelegationEvent,
    DelegationStatus,
    encode_capabilities,
)
from inbox.services import permissions


def grant(db, owner, admin, *, capabilities, channel=None, status=DelegationStatus.ACTIVE, expires_at=None):
    row = AdminPermission(
        owner_id=owner.id,
        admin_id=admin.id if admin else None,
        channel_id=channel.id if channel else None,
        permissions_mask=encode_capabilities(capabilities),
        status=status,
        invite_expires_at=expires_at,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def delegate(db_session):
    return create_user(db_session, "delegate@example.com", name="Delegate")


@pytest.mark.parametrize(
    ("current", "event", "expected"),
    [
        (DelegationStatus.PENDING, DelegationEvent.ACCEPT, DelegationStatus.ACTIVE),
        (DelegationStatus.PENDING, DelegationEvent.EXPIRE, DelegationStatus.EXPIRED),
        (DelegationStatus.PENDING, DelegationEvent.REVOKE, DelegationStatus.REVOKED),
        (DelegationStatus.ACTIVE, DelegationEvent.REVOKE, DelegationStatus.REVOKED),
        (DelegationStatus.EXPIRED, DelegationEvent.REVOKE, DelegationStatus.REVOKED),
    ],
)
def test_transition_table(current, event, expected):
    assert permissions.transition(current, event) == expected


@pytest.mark.parametrize(
    ("current", "event"),
    [
        (DelegationStatus.ACTIVE, DelegationEvent.ACCEPT),
        (DelegationStatus.EXPIRED, DelegationEvent.ACCEPT),
        (DelegationStatus.REVOKED, DelegationEvent.ACCEPT),
        (DelegationStatus.REVOKED, DelegationEvent.REVOKE),
    ],
)
def test_invalid_transitions_are_rejected(current, event):
    with pytest.raises(permissions.InvalidTransition):
        permissions.transition(current, event)


def test_owner_always_has_access(db_session, owner, channel):
    assert permissions.can_access(db_session, owner, channel, Capability.BROADCAST)


def test_capabilities_are_independent(db_session, owner, channel, delegate):
    grant(db_session, owner, delegate, capabilities=[Capability.VIEW_ALL], channel=channel)

    assert permissions.can_access(db_session, delegate, channel)
    assert permissions.can_access(db_session, delegate, channel, Capability.VIEW_ALL)
    assert not permissions.can_access(db_session, delegate, channel, Capability.REPLY)
    with pytest.raises(AuthorizationError):
        permissions.require_access(db_session, delegate, channel, Capability.BROADCAST)


def test_channel_scoped_grant_does_not_cover_other_channels(db_session, owner, channel, delegate):
    other = create_channel(db_session, owner, line_channel_id="1650000002")
    grant(db_session, owner, delegate, capabilities=[Capability.REPLY], channel=channel)

    assert permissions.can_access(db_session, delegate, channel, Capability.REPLY)
    assert not permissions.can_access(db_session, delegate, other)


def test_owner_wide_grant_covers_every_channel(db_session, owner, channel, delegate):
    other = create_channel(db_session, owner, line_channel_id="1650000002")
    grant(db_session, owner, delegate, capabilities=[Capability.REPLY])

    assert permissions.can_access(db_session, delegate, other, Capability.REPLY)
    assert [c.id for c in permissions.accessible_channels(db_session, delegate)] == [channel.id, other.id]


def test_expired_pending_grant_gives_no_access(db_session, owner, channel, delegate):
    row = grant(
        db_session,
        owner,
        delegate,
        capabilities=[Capability.REPLY],
        channel=channel,
        status=DelegationStatus.PENDING,
        expires_at=utcnow() - timedelta(minutes=1),
    )

    assert permissions.effective_status(row) == DelegationStatus.EXPIRED
    assert not permissions.can_access(db_session, delegate, channel)


def test_revoked_grant_gives_no_access(db_session, owner, channel, delegate):
    grant(db_session, owner, delegate, capabilities=[Capability.REPLY], status=DelegationStatus.REVOKED)

    assert not permissions.can_access(db_session, delegate, channel)


def test_channel_audience_lists_owner_and_active_delegates(db_session, owner, channel, delegate):
    pending_user = create_user(db_session, "pending@example.com")
    grant(db_session, owner, delegate, capabilities=[Capability.VIEW_ALL])
    grant(db_session, owner, pending_user, capabilities=[Capability.VIEW_ALL], status=DelegationStatus.PENDING)

    assert permissions.channel_audience(db_session, channel) == {owner.id, delegate.id}


def test_deleted_channels_are_not_accessible(db_session, owner):
    create_channel(db_session, owner, line_channel_id="deleted-1", status=ChannelStatus.DELETED)

    assert permissions.accessible_channels(db_session, owner) == []


def test_invitation_lifecycle(db_session, owner, channel, delegate):
    invite = permissions.create_invitation(
        db_session, owner, capabilities=[Capability.REPLY], channel_id=channel.id
    )
    assert invite.status == DelegationStatus.PENDING
    assert invite.invite_token

    accepted = permissions.accept_invitation(db_session, invite.invite_token, delegate)

    assert accepted.status == DelegationStatus.ACTIVE
    assert accepted.admin_id == delegate.id
    assert accepted.invite_token is None
    assert permissions.can_access(db_session, delegate, channel, Capability.REPLY)

    revoked = permissions.revoke_grant(db_session, owner, accepted.id)
    assert revoked.status == DelegationStatus.REVOKED
    assert not permissions.can_access(db_session, delegate, channel)


def test_expired_invitation_cannot_be_accepted(db_session, owner, delegate):
    invite = permissions.create_invitation(
        db_session, owner, capabilities=[Capability.REPLY], now=utcnow() - timedelta(days=30)
    )

    with pytest.raises(ExpiredError):
        permissions.accept_invitation(db_session, invite.invite_token, delegate)


def test_invitation_is_still_valid_at_its_expiry_instant(db_session, owner, delegate):
    issued = utcnow() - timedelta(days=30)
    invite = permissions.create_invitation(db_session, owner, capabilities=[Capability.REPLY], now=issued)
    expires_at = ensure_utc(invite.invite_expires_at)

    assert permissions.effective_status(invite, expires_at) == DelegationStatus.PENDING
    assert permissions.effective_status(invite, expires_at + timedelta(microseconds=1)) == DelegationStatus.EXPIRED

    accepted = permissions.accept_invitation(db_session, invite.invite_token, delegate, now=expires_at)
    assert accepted.status == DelegationStatus.ACTIVE


def test_invitation_bound_to_another_account(db_session, owner, delegate):
    other = create_user(db_session, "other@example.com")
    invite = permissions.create_invitation(
        db_session, owner, capabilities=[Capability.REPLY], email="delegate@example.com"
    )

    with pytest.raises(AuthorizationError):
        permissions.accept_invitation(db_session, invite.invite_token, other)


def test_owner_cannot_accept_own_invitation_or_invite_self(db_session, owner):
    invite = permissions.create_invitation(db_session, owner, capabilities=[Capability.REPLY])

    with pytest.raises(ValidationError):
        permissions.accept_invitation(db_session, invite.invite_token, owner)
    with pytest.raises(ValidationError):
        permissions.create_invitation(
            db_session, owner, capabilities=[Capability.REPLY], email="owner@example.com"
        )


def test_unknown_invitation_and_foreign_channel(db_session, owner, delegate):
    stranger_channel = create_channel(db_session, delegate, line_channel_id="1650000099")

    with pytest.raises(NotFoundError):
        permissions.get_invitation(db_session, "missing-token")
    with pytest.raises(NotFoundError):
        permissions.create_invitation(
            db_session, owner, capabilities=[Capability.REPLY], channel_id=stranger_channel.id
        )
