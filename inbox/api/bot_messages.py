"""Endpoint external bots use to log the messages they sent."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from inbox.api.deps import get_event_hub, get_line_client_factory
from inbox.database import get_db
from inbox.schemas import BotLogRequest, MessageRead
from inbox.services.bot_log import log_bot_message
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClientFactory

router = APIRouter(prefix="/bot-messages", tags=["bot"])


@router.post("/log/{token}", status_code=status.HTTP_201_CREATED)
async def log_message(
    token: str,
    payload: BotLogRequest,
    db: Session = Depends(get_db),
    hub: EventHub = Depends(get_event_hub),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
):
    """Store a bot's outgoing message; the token in the path authenticates the bot."""

    result = await log_bot_message(db, hub, client_factory, token, payload)
    body = {
        "success": True,
        "duplicate": result.duplicate,
        "conversation_id": result.conversation.id,
        "message": MessageRead.model_validate(result.message).model_dump(mode="json"),
    }
    if result.duplicate:
        return JSONResponse(status_code=status.HTTP_200_OK, content=body)
    return body
