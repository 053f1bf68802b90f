"""Channel access control and the delegation invitation lifecycle."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from inbox.config import get_settings
from inbox.core.clock import ensure_utc, utcnow
from inbox.core.errors import (
    AuthorizationError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from inbox.core.security import generate_token
from inbox.models import (
    AdminPermission,
    Capability,
    Channel,
    ChannelStatus,
    DelegationEvent,
    DelegationStatus,
    User,
    encode_capabilities,
)

logger = logging.getLogger(__name__)

settings = get_settings()

# reading a channel's conversations
READ_CAPABILITIES = (Capability.VIEW_ALL, Capability.REPLY)

_TRANSITIONS: dict[tuple[DelegationStatus, DelegationEvent], DelegationStatus] = {
    (DelegationStatus.PENDING, DelegationEvent.ACCEPT): DelegationStatus.ACTIVE,
    (DelegationStatus.PENDING, DelegationEvent.EXPIRE): DelegationStatus.EXPIRED,
    (DelegationStatus.PENDING, DelegationEvent.REVOKE): DelegationStatus.REVOKED,
    (DelegationStatus.ACTIVE, DelegationEvent.REVOKE): DelegationStatus.REVOKED,
    (DelegationStatus.EXPIRED, DelegationEvent.REVOKE): DelegationStatus.REVOKED,
}


class InvalidTransition(ValidationError):
    """Raised when a delegation event does not apply to the grant's state."""


def transition(current: DelegationStatus, event: DelegationEvent) -> DelegationStatus:
    """Return the state reached by applying ``event`` to ``current``.

    Accepting anything but a pending grant, or acting on a revoked grant, is
    rejected rather than silently ignored.
    """

    try:
        return _TRANSITIONS[(DelegationStatus(current), DelegationEvent(event))]
    except KeyError:
        raise InvalidTransition(f"Cannot {event.value} a {current.value} grant") from None


def effective_status(grant: AdminPermission, now: datetime | None = None) -> DelegationStatus:
    """Stored status, with pending grants past their expiry reported as expired."""

    moment = now or utcnow()
    if grant.status == DelegationStatus.PENDING and grant.invite_expires_at is not None:
        if ensure_utc(grant.invite_expires_at) < moment:
            return transition(DelegationStatus.PENDING, DelegationEvent.EXPIRE)
    return grant.status


def _covering_grants(db: Session, user_id: int, channel: Channel) -> list[AdminPermission]:
    stmt = select(AdminPermission).where(
        AdminPermission.admin_id == user_id,
        AdminPermission.owner_id == channel.owner_id,
        or_(AdminPermission.channel_id == channel.id, AdminPermission.channel_id.is_(None)),
    )
    return list(db.execute(stmt).scalars().all())


def can_access(
    db: Session,
    user: User,
    channel: Channel,
    capability: Capability | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    """Whether ``user`` may act on ``channel``.

    Owners always may. Anyone else needs an active grant from the owner scoped
    to this channel or to all of the owner's channels; when ``capability`` is
    given the grant must hold that exact capability. Capabilities do not imply
    one another.
    """

    if channel.owner_id == user.id:
        return True
    for grant in _covering_grants(db, user.id, channel):
        if effective_status(grant, now) != DelegationStatus.ACTIVE:
            continue
        if capability is None or Capability(capability) in grant.capabilities:
            return True
    return False


def can_access_any(
    db: Session,
    user: User,
    channel: Channel,
    capabilities: Sequence[Capability],
    *,
    now: datetime | None = None,
) -> bool:
    """:func:`can_access` for actions any one of several capabilities allows."""

    return any(can_access(db, user, channel, capability, now=now) for capability in capabilities)


def capabilities_for(db: Session, user: User, channel: Channel) -> list[Capability]:
    """Capabilities ``user`` holds on ``channel``; owners hold all of them."""

    if channel.owner_id == user.id:
        return list(Capability)
    held: set[Capability] = set()
    for grant in _covering_grants(db, user.id, channel):
        if effective_status(grant) == DelegationStatus.ACTIVE:
            held.update(grant.capabilities)
    return [capability for capability in Capability if capability in held]


def require_access(
    db: Session,
    user: User,
    channel: Channel,
    capability: Capability | Sequence[Capability] | None = None,
) -> None:
    """Raise :class:`AuthorizationError` unless the user may act on ``channel``.

    A sequence of capabilities is satisfied by a grant holding any of them.
    """

    if capability is None or isinstance(capability, (Capability, str)):
        allowed = can_access(db, user, channel, capability)
        names = [Capability(capability).value] if capability is not None else []
    else:
        allowed = can_access_any(db, user, channel, capability)
        names = [Capability(item).value for item in capability]
    if not allowed:
        detail = "No access to this channel"
        if names:
            wanted = " or ".join(f"'{name}'" for name in names)
            detail = f"Missing {wanted} permission for this channel"
        raise AuthorizationError(detail)


def channel_audience(db: Session, channel: Channel) -> set[int]:
    """Users who should see realtime events of ``channel``: the owner and active delegates."""

    audience = {channel.owner_id}
    stmt = select(AdminPermission).where(
        AdminPermission.status == DelegationStatus.ACTIVE,
        AdminPermission.admin_id.is_not(None),
        or_(
            AdminPermission.channel_id == channel.id,
            and_(AdminPermission.owner_id == channel.owner_id, AdminPermission.channel_id.is_(None)),
        ),
    )
    for grant in db.execute(stmt).scalars():
        audience.add(grant.admin_id)
    return audience


def accessible_channels(db: Session, user: User) -> list[Channel]:
    """Channels the user owns or is delegated, excluding soft-deleted ones."""

    owned = (
        db.execute(
            select(Channel).where(Channel.owner_id == user.id, Channel.status != ChannelStatus.DELETED)
        )
        .scalars()
        .all()
    )
    channels = {channel.id: channel for channel in owned}

    grants = (
        db.execute(
            select(AdminPermission).where(
                AdminPermission.admin_id == user.id,
                AdminPermission.status == DelegationStatus.ACTIVE,
            )
        )
        .scalars()
        .all()
    )
    for grant in grants:
        stmt = select(Channel).where(
            Channel.owner_id == grant.owner_id, Channel.status != ChannelStatus.DELETED
        )
        if grant.channel_id is not None:
            stmt = stmt.where(Channel.id == grant.channel_id)
        for channel in db.execute(stmt).scalars():
            channels.setdefault(channel.id, channel)
    return sorted(channels.values(), key=lambda channel: channel.id)


def create_invitation(
    db: Session,
    owner: User,
    *,
    capabilities: list[Capability],
    channel_id: int | None = None,
    email: str | None = None,
    now: datetime | None = None,
) -> AdminPermission:
    """Issue a pending grant with a fresh token.

    When ``email`` belongs to an existing account the invitation is bound to
    it, so nobody else can accept it.
    """

    moment = now or utcnow()
    if channel_id is not None:
        channel = db.get(Channel, channel_id)
        if channel is None or channel.owner_id != owner.id or channel.status == ChannelStatus.DELETED:
            raise NotFoundError("Channel not found")

    admin_id: int | None = None
    if email:
        invitee = db.execute(select(User).where(User.email == email.lower())).scalar_one_or_none()
        if invitee is not None:
            if invitee.id == owner.id:
                raise ValidationError("You cannot invite yourself")
            admin_id = invitee.id

    grant = AdminPermission(
        owner_id=owner.id,
        admin_id=admin_id,
        channel_id=channel_id,
        invite_email=email.lower() if email else None,
        permissions_mask=encode_capabilities(capabilities),
        status=DelegationStatus.PENDING,
        invite_token=generate_token(),
        invite_expires_at=moment + timedelta(hours=settings.invite_expire_hours),
        invited_at=moment,
    )
    db.add(grant)
    db.commit()
    db.refresh(grant)
    logger.info("Owner %s issued invitation %s", owner.id, grant.id)
    return grant


def get_invitation(db: Session, token: str, *, now: datetime | None = None) -> AdminPermission:
    """Pending invitation for ``token``; 404 when unknown, 410 when expired."""

    grant = db.execute(
        select(AdminPermission).where(
            AdminPermission.invite_token == token,
            AdminPermission.status == DelegationStatus.PENDING,
        )
    ).scalar_one_or_none()
    if grant is None:
        raise NotFoundError("Invitation not found")
    if effective_status(grant, now) == DelegationStatus.EXPIRED:
        raise ExpiredError("Invitation has expired")
    return grant


def accept_invitation(
    db: Session, token: str, user: User, *, now: datetime | None = None
) -> AdminPermission:
    """Bind ``user`` to the invitation and activate it.

    An account that is already an active member of the owner's team is
    rejected and the now useless pending invitation is deleted.
    """

    moment = now or utcnow()
    grant = get_invitation(db, token, now=moment)

    if grant.owner_id == user.id:
        raise ValidationError("You cannot accept your own invitation")

    existing = db.execute(
        select(AdminPermission).where(
            AdminPermission.owner_id == grant.owner_id,
            AdminPermission.admin_id == user.id,
            AdminPermission.status == DelegationStatus.ACTIVE,
        )
    ).scalars().first()
    if existing is not None:
        db.delete(grant)
        db.commit()
        raise ValidationError("Already a member of this team")

    if grant.admin_id is not None and grant.admin_id != user.id:
        raise AuthorizationError("This invitation was issued to another account")

    grant.status = transition(effective_status(grant, moment), DelegationEvent.ACCEPT)
    grant.admin_id = user.id
    grant.accepted_at = moment
    grant.invite_token = None
    db.commit()
    db.refresh(grant)
    logger.info("User %s joined the team of owner %s", user.id, grant.owner_id)
    return grant


def revoke_grant(
    db: Session, owner: User, grant_id: int, *, now: datetime | None = None
) -> AdminPermission:
    grant = db.get(AdminPermission, grant_id)
    if grant is None or grant.owner_id != owner.id:
        raise NotFoundError("Team member not found")
    grant.status = transition(effective_status(grant, now), DelegationEvent.REVOKE)
    grant.invite_token = None
    db.commit()
    db.refresh(grant)
    return grant
