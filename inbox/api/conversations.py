"""Conversation list, history, read state, workflow status and tags."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from inbox.api.deps import get_current_user, get_event_hub, require_channel, require_conversation
from inbox.core.errors import ValidationError
from inbox.database import get_db, run_with_retry_async
from inbox.models import (
    Capability,
    Conversation,
    ConversationStatus,
    Message,
    MessageDirection,
    Tag,
    User,
)
from inbox.schemas import (
    ConversationStatusUpdate,
    ConversationSummary,
    ConversationTagsUpdate,
    MessageRead,
    TagRead,
)
from inbox.services.event_hub import EventHub
from inbox.services.notifications import notify_conversation_update
from inbox.services.permissions import READ_CAPABILITIES, accessible_channels, can_access_any

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationSummary])
def list_conversations(
    channel_id: int | None = Query(default=None),
    status: ConversationStatus | None = Query(default=None),
    tag_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Conversation]:
    """Conversations of one channel, or of every channel the user may read."""

    if channel_id is not None:
        channel_ids = [require_channel(db, current_user, channel_id, READ_CAPABILITIES).id]
    else:
        channel_ids = [
            channel.id
            for channel in accessible_channels(db, current_user)
            if can_access_any(db, current_user, channel, READ_CAPABILITIES)
        ]
    if not channel_ids:
        return []

    stmt = (
        select(Conversation)
        .where(Conversation.channel_id.in_(channel_ids))
        .options(selectinload(Conversation.remote_user), selectinload(Conversation.tags))
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if status is not None:
        stmt = stmt.where(Conversation.status == status)
    if tag_id is not None:
        stmt = stmt.where(Conversation.tags.any(Tag.id == tag_id))
    return list(db.execute(stmt).scalars().all())


@router.get("/{conversation_id}/messages", response_model=list[MessageRead])
def list_messages(
    conversation_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    before_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Message]:
    """History page in chronological order; ``before_id`` pages backwards."""

    conversation = require_conversation(db, current_user, conversation_id, READ_CAPABILITIES)
    stmt = select(Message).where(Message.conversation_id == conversation.id)
    if before_id is not None:
        stmt = stmt.where(Message.id < before_id)
    stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
    messages = list(db.execute(stmt).scalars().all())
    messages.reverse()
    return messages


@router.post("/{conversation_id}/read", response_model=ConversationSummary)
async def mark_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    hub: EventHub = Depends(get_event_hub),
) -> Conversation:
    conversation = require_conversation(db, current_user, conversation_id, READ_CAPABILITIES)

    def _work(session: Session) -> None:
        session.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.direction == MessageDirection.INCOMING,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
        )
        conversation.unread_count = 0
        if conversation.status == ConversationStatus.UNREAD:
            conversation.status = ConversationStatus.READ

    await run_with_retry_async(db, _work)
    db.refresh(conversation)
    await notify_conversation_update(hub, db, conversation.channel, conversation)
    return conversation


@router.put("/{conversation_id}/status", response_model=ConversationSummary)
async def update_status(
    conversation_id: int,
    payload: ConversationStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    hub: EventHub = Depends(get_event_hub),
) -> Conversation:
    """Move a conversation through the workflow (processing, completed, spam...).

    Unread count and messages are left alone; only :func:`mark_read` clears them.
    """

    conversation = require_conversation(db, current_user, conversation_id, Capability.REPLY)
    new_status = payload.status

    def _work(session: Session) -> None:
        conversation.status = new_status

    await run_with_retry_async(db, _work)
    db.refresh(conversation)
    await notify_conversation_update(hub, db, conversation.channel, conversation)
    return conversation


@router.get("/{conversation_id}/tags", response_model=list[TagRead])
def list_conversation_tags(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Tag]:
    conversation = require_conversation(db, current_user, conversation_id, READ_CAPABILITIES)
    return sorted(conversation.tags, key=lambda tag: (tag.name, tag.id))


@router.put("/{conversation_id}/tags", response_model=ConversationSummary)
async def replace_conversation_tags(
    conversation_id: int,
    payload: ConversationTagsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    hub: EventHub = Depends(get_event_hub),
) -> Conversation:
    """Replace the conversation's tags; every tag must belong to its channel."""

    conversation = require_conversation(db, current_user, conversation_id, Capability.MANAGE_TAGS)
    wanted = set(payload.tag_ids)
    tags: list[Tag] = []
    if wanted:
        tags = list(
            db.execute(
                select(Tag).where(Tag.id.in_(wanted), Tag.channel_id == conversation.channel_id)
            ).scalars()
        )
        missing = wanted - {tag.id for tag in tags}
        if missing:
            raise ValidationError(
                "Unknown tags for this channel", missing_tag_ids=sorted(missing)
            )

    def _work(session: Session) -> None:
        conversation.tags = tags

    await run_with_retry_async(db, _work)
    db.refresh(conversation)
    await notify_conversation_update(hub, db, conversation.channel, conversation)
    return conversation
