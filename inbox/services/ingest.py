"""Normalization and storage of inbound LINE messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.config import get_settings
from inbox.core.clock import from_millis, utcnow
from inbox.core.errors import ValidationError
from inbox.database import run_with_retry_async
from inbox.models import (
    Channel,
    Conversation,
    ConversationStatus,
    Message,
    MessageDirection,
    RemoteUser,
)
from inbox.monitoring.metrics import messages_ingested_total
from inbox.schemas.payloads import (
    AudioPayload,
    FilePayload,
    ImagePayload,
    LocationPayload,
    MessagePayload,
    StickerPayload,
    TextPayload,
    VideoPayload,
    build_preview,
)
from inbox.schemas.webhook import LineEvent, LineMessage
from inbox.services.line_client import LineClient, message_content_url
from inbox.services.resolver import resolve_chat, resolve_conversation, sender_info

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass(slots=True)
class IngestResult:
    message: Message
    conversation: Conversation
    remote_user: RemoteUser
    conversation_created: bool = False
    duplicate: bool = False


def payload_from_line_message(message: LineMessage) -> MessagePayload:
    """Map a LINE message object onto its payload.

    Media bytes are not downloaded here; the row keeps the content endpoint
    of the message and the bytes are fetched when someone asks for them.
    """

    kind = message.type
    if kind == "text":
        if not message.text:
            raise ValidationError("Text message without text")
        return TextPayload(text=message.text)
    if kind == "image":
        return ImagePayload(url=message_content_url(message.id))
    if kind == "video":
        return VideoPayload(url=message_content_url(message.id))
    if kind == "audio":
        if message.duration:
            return AudioPayload(url=message_content_url(message.id), duration=message.duration)
        return AudioPayload(url=message_content_url(message.id))
    if kind == "file":
        return FilePayload(url=message_content_url(message.id))
    if kind == "location":
        if message.latitude is None or message.longitude is None:
            raise ValidationError("Location message without coordinates")
        return LocationPayload(
            title=message.title,
            address=message.address,
            latitude=message.latitude,
            longitude=message.longitude,
        )
    if kind == "sticker":
        if not message.package_id or not message.sticker_id:
            raise ValidationError("Sticker message without package or sticker id")
        return StickerPayload(package_id=message.package_id, sticker_id=message.sticker_id)
    raise ValidationError(f"Unsupported message type '{kind}'")


def find_message(db: Session, channel_id: int, line_message_id: str) -> Message | None:
    stmt = select(Message).where(
        Message.channel_id == channel_id,
        Message.line_message_id == line_message_id,
    )
    return db.execute(stmt).scalar_one_or_none()


async def ingest_event(
    db: Session, channel: Channel, event: LineEvent, client: LineClient
) -> IngestResult:
    """Store one inbound message event and bring its conversation up to date.

    The message row is committed before the conversation changes, so anything
    published after this returns refers to a row that exists. A message id
    already stored for the channel is reported as a duplicate and nothing is
    written.
    """

    if event.message is None or event.source is None:
        raise ValidationError("Message event without message or source")
    payload = payload_from_line_message(event.message)

    remote_user = await resolve_chat(db, channel, event.source, client)
    if remote_user is None:
        raise ValidationError("Event source names no user, group or room")

    line_message_id = event.message.id
    existing = find_message(db, channel.id, line_message_id)
    if existing is not None:
        logger.info("Skipping duplicate LINE message %s on channel %s", line_message_id, channel.id)
        return IngestResult(existing, existing.conversation, remote_user, duplicate=True)

    info = await sender_info(client, event.source)
    conversation, created = await resolve_conversation(db, channel, remote_user)

    sender_name = info.get("display_name") if info else None
    preview = build_preview(payload, sender_name=sender_name, limit=settings.preview_max_length)
    sent_at = from_millis(event.timestamp) or utcnow()
    columns = payload.columns()

    def _insert(session: Session) -> Message:
        message = Message(
            conversation_id=conversation.id,
            channel_id=channel.id,
            remote_user_id=remote_user.id,
            line_message_id=line_message_id,
            direction=MessageDirection.INCOMING,
            reply_token=event.reply_token,
            sender_info=info,
            is_read=False,
            created_at=sent_at,
            **columns,
        )
        session.add(message)
        return message

    try:
        message = await run_with_retry_async(db, _insert)
    except IntegrityError:
        existing = find_message(db, channel.id, line_message_id)
        if existing is None:
            raise
        logger.info("LINE message %s was stored concurrently", line_message_id)
        return IngestResult(existing, conversation, remote_user, duplicate=True)

    received_at = utcnow()

    def _update(session: Session) -> None:
        conversation.status = ConversationStatus.UNREAD
        # a conversation created for this message already counts it
        if not created:
            conversation.unread_count = (conversation.unread_count or 0) + 1
        conversation.last_message_preview = preview
        conversation.last_message_at = received_at
        remote_user.last_message_at = received_at

    await run_with_retry_async(db, _update)
    messages_ingested_total.labels(payload.type).inc()
    logger.debug(
        "Stored %s message %s in conversation %s", payload.type, message.id, conversation.id
    )
    return IngestResult(message, conversation, remote_user, conversation_created=created)
