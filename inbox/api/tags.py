"""Per-channel conversation tags."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.api.deps import get_current_user, require_channel
from inbox.core.errors import ConflictError, NotFoundError
from inbox.database import get_db
from inbox.models import Capability, Tag, User, conversation_tags
from inbox.schemas import TagCreate, TagRead, TagUpdate
from inbox.services.permissions import accessible_channels

router = APIRouter(prefix="/tags", tags=["tags"])

logger = logging.getLogger(__name__)


def _get_tag(db: Session, user: User, tag_id: int, capability: Capability | None = None) -> Tag:
    tag = db.get(Tag, tag_id)
    if tag is None:
        raise NotFoundError("Tag not found")
    require_channel(db, user, tag.channel_id, capability)
    return tag


def _name_taken(db: Session, channel_id: int, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Tag.id).where(Tag.channel_id == channel_id, Tag.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Tag.id != exclude_id)
    return db.execute(stmt).first() is not None


def _commit_tag(db: Session, tag: Tag) -> Tag:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A tag with this name already exists on the channel") from exc
    db.refresh(tag)
    return tag


@router.get("", response_model=list[TagRead])
def list_tags(
    channel_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Tag]:
    """Tags of one channel, or of every channel the user can see, by name."""

    if channel_id is not None:
        channel_ids = [require_channel(db, current_user, channel_id).id]
    else:
        channel_ids = [channel.id for channel in accessible_channels(db, current_user)]
    if not channel_ids:
        return []
    stmt = select(Tag).where(Tag.channel_id.in_(channel_ids)).order_by(Tag.name.asc(), Tag.id.asc())
    return list(db.execute(stmt).scalars().all())


@router.post("", response_model=TagRead, status_code=status.HTTP_201_CREATED)
def create_tag(
    payload: TagCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Tag:
    channel = require_channel(db, current_user, payload.channel_id, Capability.MANAGE_TAGS)
    name = payload.name.strip()
    if _name_taken(db, channel.id, name):
        raise ConflictError("A tag with this name already exists on the channel")

    tag = Tag(channel_id=channel.id, name=name, color=payload.color, description=payload.description)
    db.add(tag)
    tag = _commit_tag(db, tag)
    logger.info("Created tag %s on channel %s", tag.id, channel.id)
    return tag


@router.get("/{tag_id}", response_model=TagRead)
def get_tag(
    tag_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Tag:
    return _get_tag(db, current_user, tag_id)


@router.put("/{tag_id}", response_model=TagRead)
def update_tag(
    tag_id: int,
    payload: TagUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Tag:
    tag = _get_tag(db, current_user, tag_id, Capability.MANAGE_TAGS)
    if payload.name is not None:
        name = payload.name.strip()
        if name != tag.name and _name_taken(db, tag.channel_id, name, exclude_id=tag.id):
            raise ConflictError("A tag with this name already exists on the channel")
        tag.name = name
    if payload.color is not None:
        tag.color = payload.color
    if "description" in payload.model_fields_set:
        tag.description = payload.description
    return _commit_tag(db, tag)


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tag(
    tag_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    """Remove a tag and detach it from every conversation carrying it."""

    tag = _get_tag(db, current_user, tag_id, Capability.MANAGE_TAGS)
    channel_id = tag.channel_id
    db.execute(delete(conversation_tags).where(conversation_tags.c.tag_id == tag.id))
    db.delete(tag)
    db.commit()
    logger.info("Deleted tag %s from channel %s", tag_id, channel_id)
