"""Registration, management and removal of LINE channels."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from inbox.api.deps import get_current_user, get_line_client_factory, load_channel, require_channel
from inbox.core.clock import utcnow
from inbox.core.errors import AuthorizationError, ConflictError, NotFoundError, ProviderError
from inbox.database import get_db
from inbox.models import Capability, Channel, ChannelStatus, User
from inbox.schemas import ChannelCreate, ChannelDetail, ChannelRead, ChannelUpdate
from inbox.services.line_client import LineClientFactory
from inbox.services.permissions import accessible_channels, can_access, capabilities_for, require_access

router = APIRouter(prefix="/channels", tags=["channels"])

logger = logging.getLogger(__name__)


def _apply_bot_info(channel: Channel, info: dict) -> None:
    if info.get("basicId"):
        channel.basic_id = info["basicId"]
    if info.get("pictureUrl"):
        channel.picture_url = info["pictureUrl"]


async def _refresh_bot_info(channel: Channel, client_factory: LineClientFactory) -> None:
    try:
        info = await client_factory(channel.access_token).get_bot_info()
    except ProviderError as exc:
        logger.warning("Bot info for channel %s unavailable: %s", channel.line_channel_id, exc.detail)
        return
    _apply_bot_info(channel, info)


@router.get("", response_model=list[ChannelRead])
def list_channels(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Channel]:
    return accessible_channels(db, current_user)


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
async def register_channel(
    payload: ChannelCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> Channel:
    """Connect a LINE channel, restoring the earlier row when it was deleted.

    Restoring keeps the row id, so its users, conversations and messages come
    back with it.
    """

    existing = db.execute(
        select(Channel).where(
            Channel.owner_id == current_user.id,
            Channel.line_channel_id == payload.line_channel_id,
        )
    ).scalar_one_or_none()
    if existing is not None and existing.status != ChannelStatus.DELETED:
        raise ConflictError("This LINE channel is already connected")

    if existing is not None:
        channel = existing
        channel.name = payload.name
        channel.channel_secret = payload.channel_secret
        channel.access_token = payload.access_token
        channel.status = ChannelStatus.ACTIVE
        channel.deleted_at = None
        logger.info("Restoring channel %s for owner %s", channel.id, current_user.id)
    else:
        channel = Channel(
            owner_id=current_user.id,
            name=payload.name,
            line_channel_id=payload.line_channel_id,
            channel_secret=payload.channel_secret,
            access_token=payload.access_token,
            status=ChannelStatus.ACTIVE,
        )
        db.add(channel)

    await _refresh_bot_info(channel, client_factory)
    db.commit()
    db.refresh(channel)
    return channel


@router.delete("/{channel_id}")
def delete_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Soft-delete: the row and everything hanging off it stay for a later restore."""

    channel = load_channel(db, channel_id)
    if channel.owner_id != current_user.id:
        if can_access(db, current_user, channel):
            raise AuthorizationError("Only the owner can delete a channel")
        raise AuthorizationError("No access to this channel")
    channel.status = ChannelStatus.DELETED
    channel.deleted_at = utcnow()
    db.commit()
    return {"success": True}


def _detail(db: Session, user: User, channel: Channel) -> ChannelDetail:
    return ChannelDetail.model_validate(
        {
            **ChannelRead.model_validate(channel).model_dump(),
            "is_owner": channel.owner_id == user.id,
            "capabilities": capabilities_for(db, user, channel),
        }
    )


@router.get("/{channel_id}", response_model=ChannelDetail)
def get_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelDetail:
    channel = require_channel(db, current_user, channel_id, Capability.MANAGE_CHANNEL)
    return _detail(db, current_user, channel)


@router.put("/{channel_id}", response_model=ChannelDetail)
def update_channel(
    channel_id: int,
    payload: ChannelUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelDetail:
    """Rename, rotate credentials, or switch a channel between active and inactive."""

    channel = require_channel(db, current_user, channel_id, Capability.MANAGE_CHANNEL)
    if payload.name is not None:
        channel.name = payload.name
    if payload.channel_secret is not None:
        channel.channel_secret = payload.channel_secret
    if payload.access_token is not None:
        channel.access_token = payload.access_token
    if payload.status is not None:
        channel.status = ChannelStatus(payload.status)
    db.commit()
    db.refresh(channel)
    logger.info("Channel %s updated by user %s", channel.id, current_user.id)
    return _detail(db, current_user, channel)


@router.post("/{channel_id}/refresh", response_model=ChannelDetail)
async def refresh_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> ChannelDetail:
    """Re-read the bot's basic id and picture from LINE; provider failures surface as 502."""

    channel = load_channel(db, channel_id)
    if not channel.is_active:
        raise NotFoundError("Channel not found")
    require_access(db, current_user, channel, Capability.MANAGE_CHANNEL)
    info = await client_factory(channel.access_token).get_bot_info()
    _apply_bot_info(channel, info)
    db.commit()
    db.refresh(channel)
    return _detail(db, current_user, channel)
