"""HTTP endpoints for sending messages and reading their content."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from inbox.api.deps import (
    get_current_user,
    get_event_hub,
    get_line_client_factory,
    require_channel,
    require_conversation,
)
from inbox.core.errors import NotFoundError
from inbox.database import get_db
from inbox.models import Capability, Message, MessageDirection, MessageSource, MessageType, User
from inbox.schemas import MessageRead, SendMessageRequest
from inbox.services import dispatcher
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClientFactory
from inbox.services.permissions import READ_CAPABILITIES

router = APIRouter(prefix="/messages", tags=["messages"])

MEDIA_TYPES = (MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO, MessageType.FILE)


@router.post("/send")
async def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    hub: EventHub = Depends(get_event_hub),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> dict:
    """Send an operator reply to a conversation through LINE push."""

    conversation = require_conversation(db, current_user, payload.conversation_id, Capability.REPLY)
    channel = conversation.channel
    message_payload = dispatcher.build_outgoing_payload(payload)
    result = await dispatcher.send(
        db,
        hub,
        client_factory(channel.access_token),
        channel,
        conversation,
        message_payload,
        source=MessageSource.MANUAL,
        sent_by_id=current_user.id,
    )
    return {
        "success": True,
        "delivery": result.delivery,
        "message": MessageRead.model_validate(result.message).model_dump(mode="json"),
    }


@router.get("/{message_id}/content")
async def get_message_content(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> Response:
    """Bytes of an inbound media message, fetched from LINE on demand."""

    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    channel = require_channel(db, current_user, message.channel_id, READ_CAPABILITIES)
    if (
        message.direction != MessageDirection.INCOMING
        or message.message_type not in MEDIA_TYPES
        or not message.line_message_id
    ):
        raise NotFoundError("Message has no downloadable content")

    client = client_factory(channel.access_token)
    content, content_type = await client.get_message_content(message.line_message_id)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=86400"},
    )
