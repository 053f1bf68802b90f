"""Logging of messages an external bot already sent through LINE."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from inbox.core.clock import ensure_utc, from_millis, utcnow
from inbox.core.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from inbox.models import (
    Channel,
    ChannelStatus,
    Conversation,
    ConversationStatus,
    FollowStatus,
    Message,
    MessageSource,
    MessageType,
    RemoteUser,
    User,
)
from inbox.monitoring.metrics import outbound_messages_total
from inbox.schemas import BotLogRequest
from inbox.schemas.payloads import (
    AudioPayload,
    FlexPayload,
    ImagePayload,
    MessagePayload,
    StickerPayload,
    TextPayload,
    VideoPayload,
)
from inbox.services.dispatcher import record_outgoing
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClientFactory
from inbox.services.notifications import notify_message_flow
from inbox.services.resolver import find_remote_user, resolve_conversation, resolve_user

logger = logging.getLogger(__name__)

# keeps a logged answer ordered after the message it answers
ORDERING_OFFSET = timedelta(milliseconds=500)


@dataclass(slots=True)
class BotLogResult:
    message: Message
    conversation: Conversation
    duplicate: bool = False


def authenticate_bot(db: Session, token: str) -> User:
    if not token:
        raise AuthenticationError("Invalid bot token")
    user = db.execute(select(User).where(User.bot_api_token == token)).scalar_one_or_none()
    if user is None:
        raise AuthenticationError("Invalid bot token")
    return user


def build_bot_payload(request: BotLogRequest) -> MessagePayload:
    kind = request.message_type
    if kind == MessageType.TEXT and request.flex_content:
        kind = MessageType.FLEX
    if kind == MessageType.FLEX:
        if not request.flex_content:
            raise ValidationError("flex_content is required for flex messages")
        return FlexPayload(
            alt_text=request.alt_text or request.content or "[Flex Message]",
            contents=request.flex_content,
        )
    if kind == MessageType.STICKER:
        if not request.sticker_id or not request.package_id:
            raise ValidationError("sticker_id and package_id are required for stickers")
        return StickerPayload(package_id=request.package_id, sticker_id=request.sticker_id)
    if kind in (MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO):
        if not request.media_url:
            raise ValidationError("media_url is required for this message type")
        if kind == MessageType.IMAGE:
            return ImagePayload(url=request.media_url)
        if kind == MessageType.VIDEO:
            return VideoPayload(url=request.media_url)
        return AudioPayload(url=request.media_url)
    if kind == MessageType.TEXT:
        if not request.content:
            raise ValidationError("content, flex_content or a sticker is required")
        return TextPayload(text=request.content)
    raise ValidationError(f"Unsupported message type '{kind.value}'")


def resolve_bot_channel(db: Session, owner: User, request: BotLogRequest) -> Channel:
    """Channel the bot is talking through.

    Tried in order: the internal id, the LINE channel id among the owner's
    active channels, then any active channel of the owner that already knows
    the target user.
    """

    if request.channel_id is not None:
        channel = db.get(Channel, request.channel_id)
        if channel is None or channel.status == ChannelStatus.DELETED:
            raise NotFoundError("Channel not found")
        if channel.owner_id != owner.id:
            raise AuthorizationError("Channel belongs to another account")
        if not channel.is_active:
            raise NotFoundError("Channel not found")
        return channel

    if request.line_channel_id:
        channel = db.execute(
            select(Channel).where(
                Channel.owner_id == owner.id,
                Channel.line_channel_id == request.line_channel_id,
                Channel.status == ChannelStatus.ACTIVE,
            )
        ).scalar_one_or_none()
        if channel is not None:
            return channel

    if request.line_user_id:
        channel = db.execute(
            select(Channel)
            .join(RemoteUser, RemoteUser.channel_id == Channel.id)
            .where(
                Channel.owner_id == owner.id,
                Channel.status == ChannelStatus.ACTIVE,
                RemoteUser.line_user_id == request.line_user_id,
            )
            .order_by(Channel.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if channel is not None:
            return channel

    raise NotFoundError("Channel not found")


def _find_logged(db: Session, channel_id: int, bot_message_id: str) -> Message | None:
    stmt = (
        select(Message)
        .where(Message.channel_id == channel_id, Message.bot_message_id == bot_message_id)
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def _message_time(db: Session, conversation: Conversation, original_timestamp: int | None) -> datetime:
    answered = from_millis(original_timestamp)
    if answered is not None:
        return answered + ORDERING_OFFSET
    latest = db.execute(
        select(Message.created_at)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if latest is not None:
        return ensure_utc(latest) + ORDERING_OFFSET
    return utcnow()


async def log_bot_message(
    db: Session,
    hub: EventHub,
    client_factory: LineClientFactory,
    token: str,
    request: BotLogRequest,
) -> BotLogResult:
    """Record a bot's outgoing message as a ``bot_reply`` in the inbox.

    Nothing is sent to LINE; the bot already did that. Repeating a call with
    the same ``bot_message_id`` returns the stored message.
    """

    owner = authenticate_bot(db, token)
    if not request.line_user_id:
        raise ValidationError("line_user_id is required")
    payload = build_bot_payload(request)
    channel = resolve_bot_channel(db, owner, request)

    if request.bot_message_id:
        existing = _find_logged(db, channel.id, request.bot_message_id)
        if existing is not None:
            return BotLogResult(existing, existing.conversation, duplicate=True)

    known = find_remote_user(db, channel.id, request.line_user_id)
    if known is not None and known.follow_status in (FollowStatus.UNFOLLOWED, FollowStatus.BLOCKED):
        raise ValidationError("User has unfollowed or blocked this account")

    client = client_factory(channel.access_token)
    remote_user = await resolve_user(
        db, channel, request.line_user_id, client, mark_following=False
    )
    conversation, created = await resolve_conversation(
        db,
        channel,
        remote_user,
        initial_status=ConversationStatus.READ,
        initial_unread=0,
    )

    message = await record_outgoing(
        db,
        channel,
        conversation,
        payload,
        source=MessageSource.BOT_REPLY,
        created_at=_message_time(db, conversation, request.original_timestamp),
        bot_message_id=request.bot_message_id,
    )
    outbound_messages_total.labels(MessageSource.BOT_REPLY.value, "logged").inc()
    await notify_message_flow(hub, db, channel, conversation, message, created=created)
    logger.info("Logged bot message %s for channel %s", message.id, channel.id)
    return BotLogResult(message, conversation)
