"""Team delegation: invitations, acceptance and revocation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from inbox.api.deps import get_current_user
from inbox.core.clock import utcnow
from inbox.database import get_db
from inbox.models import AdminPermission, User
from inbox.schemas import GrantRead, InviteCreate
from inbox.services import permissions

router = APIRouter(prefix="/team", tags=["team"])


def serialize_grant(grant: AdminPermission, *, include_token: bool = True) -> GrantRead:
    return GrantRead(
        id=grant.id,
        owner_id=grant.owner_id,
        admin_id=grant.admin_id,
        channel_id=grant.channel_id,
        invite_email=grant.invite_email,
        capabilities=grant.capabilities,
        status=permissions.effective_status(grant, utcnow()),
        invite_token=grant.invite_token if include_token else None,
        invite_expires_at=grant.invite_expires_at,
        accepted_at=grant.accepted_at,
    )


@router.get("", response_model=list[GrantRead])
def list_team(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[GrantRead]:
    """Grants issued by the current user, with expired invitations reported as such."""

    stmt = (
        select(AdminPermission)
        .where(AdminPermission.owner_id == current_user.id)
        .order_by(AdminPermission.id.asc())
    )
    return [serialize_grant(grant) for grant in db.execute(stmt).scalars()]


@router.post("/invite", response_model=GrantRead, status_code=status.HTTP_201_CREATED)
def create_invite(
    payload: InviteCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantRead:
    grant = permissions.create_invitation(
        db,
        current_user,
        capabilities=payload.capabilities,
        channel_id=payload.channel_id,
        email=payload.email,
    )
    return serialize_grant(grant)


@router.get("/invite/{token}", response_model=GrantRead)
def inspect_invite(
    token: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantRead:
    grant = permissions.get_invitation(db, token)
    return serialize_grant(grant, include_token=False)


@router.post("/accept/{token}", response_model=GrantRead)
def accept_invite(
    token: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantRead:
    grant = permissions.accept_invitation(db, token, current_user)
    return serialize_grant(grant)


@router.delete("/{grant_id}", response_model=GrantRead)
def revoke(
    grant_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantRead:
    grant = permissions.revoke_grant(db, current_user, grant_id)
    return serialize_grant(grant)
