"""Outbound delivery through LINE and the bookkeeping that follows it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

from inbox.config import get_settings
from inbox.core.clock import ensure_utc, utcnow
from inbox.core.errors import ProviderError, ValidationError
from inbox.database import run_with_retry_async
from inbox.models import Channel, Conversation, Message, MessageDirection, MessageSource
from inbox.monitoring.metrics import outbound_messages_total
from inbox.schemas import SendMessageRequest
from inbox.schemas.payloads import (
    AudioPayload,
    BasePayload,
    FlexPayload,
    ImagePayload,
    MessagePayload,
    StickerPayload,
    TextPayload,
    VideoPayload,
    build_preview,
)
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClient
from inbox.services.notifications import notify_conversation_update, notify_new_message

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass(slots=True)
class DispatchResult:
    message: Message
    delivery: str


def normalize_media_url(url: str | None, *, base_url: str | None = None) -> str:
    """Rewrite links to this app's upload path onto the media route and require HTTPS."""

    if not url or not url.strip():
        raise ValidationError("media_url is required for this message type")
    url = url.strip()
    base = (base_url or settings.app_base_url).rstrip("/")
    upload_prefix = f"{base}/uploads/"
    if url.startswith(upload_prefix):
        url = f"{base}/api/media/{url[len(upload_prefix):]}"
    if not url.lower().startswith("https://"):
        raise ValidationError("media_url must use HTTPS")
    return url


def build_outgoing_payload(request: SendMessageRequest) -> MessagePayload:
    """Typed payload for a dashboard send request."""

    kind = request.message_type
    if kind == "text":
        if not request.content or not request.content.strip():
            raise ValidationError("content is required for text messages")
        return TextPayload(text=request.content)
    if kind == "image":
        url = normalize_media_url(request.media_url)
        preview = normalize_media_url(request.preview_url) if request.preview_url else None
        return ImagePayload(url=url, preview_url=preview)
    if kind == "video":
        url = normalize_media_url(request.media_url)
        preview = normalize_media_url(request.preview_url) if request.preview_url else None
        return VideoPayload(url=url, preview_url=preview)
    if kind == "audio":
        url = normalize_media_url(request.media_url)
        if request.duration:
            return AudioPayload(url=url, duration=request.duration)
        return AudioPayload(url=url)
    if kind == "sticker":
        if not request.sticker_id or not request.package_id:
            raise ValidationError("sticker_id and package_id are required for stickers")
        return StickerPayload(package_id=request.package_id, sticker_id=request.sticker_id)
    if kind == "flex":
        if not request.flex_content:
            raise ValidationError("flex_content is required for flex messages")
        return FlexPayload(
            alt_text=request.alt_text or request.content or "[Flex Message]",
            contents=request.flex_content,
        )
    raise ValidationError(f"Unsupported message type '{kind}'")


async def deliver(
    client: LineClient,
    payloads: Sequence[BasePayload],
    *,
    to: str,
    reply_token: str | None = None,
) -> str:
    """Send through the reply endpoint when a token is available, else push.

    A reply token is single use and short lived; when LINE rejects it the
    message is pushed instead. Any other rejection propagates with LINE's
    error message.
    """

    messages = [payload.to_line() for payload in payloads]
    if reply_token:
        try:
            await client.reply_message(reply_token, messages)
            return "reply"
        except ProviderError as exc:
            if exc.provider_status != 400:
                raise
            logger.info("Reply token rejected (%s), falling back to push", exc.detail)
    await client.push_message(to, messages)
    return "push"


async def record_outgoing(
    db: Session,
    channel: Channel,
    conversation: Conversation,
    payload: BasePayload,
    *,
    source: MessageSource,
    created_at: datetime | None = None,
    sent_by_id: int | None = None,
    bot_message_id: str | None = None,
) -> Message:
    """Persist an outgoing message and move the conversation preview forward.

    Unread count and status are left alone. The preview only changes when
    this message is not older than the one currently shown.
    """

    moment = created_at or utcnow()
    preview = build_preview(payload, limit=settings.preview_max_length)
    columns = payload.columns()

    def _work(session: Session) -> Message:
        message = Message(
            conversation_id=conversation.id,
            channel_id=channel.id,
            remote_user_id=conversation.remote_user_id,
            direction=MessageDirection.OUTGOING,
            source_type=source,
            sent_by_id=sent_by_id,
            bot_message_id=bot_message_id,
            is_read=True,
            created_at=moment,
            **columns,
        )
        session.add(message)
        session.flush()
        last = ensure_utc(conversation.last_message_at)
        if last is None or last <= moment:
            conversation.last_message_preview = preview
            conversation.last_message_at = moment
        return message

    message = await run_with_retry_async(db, _work)
    db.refresh(message)
    db.refresh(conversation)
    return message


async def send(
    db: Session,
    hub: EventHub,
    client: LineClient,
    channel: Channel,
    conversation: Conversation,
    payload: BasePayload,
    *,
    source: MessageSource,
    reply_token: str | None = None,
    sent_by_id: int | None = None,
) -> DispatchResult:
    """Deliver ``payload`` to the conversation partner, store it and notify dashboards."""

    target = conversation.remote_user.line_user_id
    try:
        delivery = await deliver(client, [payload], to=target, reply_token=reply_token)
    except ProviderError:
        outbound_messages_total.labels(source.value, "failed").inc()
        raise
    outbound_messages_total.labels(source.value, "sent").inc()

    message = await record_outgoing(
        db, channel, conversation, payload, source=source, sent_by_id=sent_by_id
    )
    await notify_new_message(hub, db, channel, conversation, message)
    await notify_conversation_update(hub, db, channel, conversation)
    logger.info(
        "Sent %s message %s to conversation %s via %s",
        source.value,
        message.id,
        conversation.id,
        delivery,
    )
    return DispatchResult(message=message, delivery=delivery)
