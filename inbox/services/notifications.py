"""Channel-level realtime events built on top of the event hub."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from inbox.models import Channel, Conversation, Message
from inbox.schemas import ConversationSummary, MessageRead
from inbox.services.event_hub import EventHub
from inbox.services.permissions import channel_audience

NEW_MESSAGE = "new_message"
CONVERSATION_UPDATE = "conversation_update"
NEW_CONVERSATION = "new_conversation"


def serialize_message(message: Message) -> dict[str, Any]:
    return MessageRead.model_validate(message).model_dump(mode="json")


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    return ConversationSummary.model_validate(conversation).model_dump(mode="json")


async def notify_new_message(
    hub: EventHub, db: Session, channel: Channel, conversation: Conversation, message: Message
) -> None:
    await hub.publish_many(
        channel_audience(db, channel),
        NEW_MESSAGE,
        {"conversation_id": conversation.id, "message": serialize_message(message)},
    )


async def notify_conversation_update(
    hub: EventHub, db: Session, channel: Channel, conversation: Conversation
) -> None:
    await hub.publish_many(
        channel_audience(db, channel), CONVERSATION_UPDATE, serialize_conversation(conversation)
    )


async def notify_new_conversation(
    hub: EventHub, db: Session, channel: Channel, conversation: Conversation
) -> None:
    await hub.publish_many(
        channel_audience(db, channel), NEW_CONVERSATION, serialize_conversation(conversation)
    )


async def notify_message_flow(
    hub: EventHub,
    db: Session,
    channel: Channel,
    conversation: Conversation,
    message: Message,
    *,
    created: bool = False,
) -> None:
    """Events that follow any stored message, in the order dashboards expect them."""

    if created:
        await notify_new_conversation(hub, db, channel, conversation)
    await notify_new_message(hub, db, channel, conversation, message)
    await notify_conversation_update(hub, db, channel, conversation)
