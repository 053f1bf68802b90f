"""LINE webhook receiver."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from inbox.api.deps import get_event_hub, get_line_client_factory
from inbox.core.errors import NotFoundError
from inbox.database import get_db
from inbox.models import Channel
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClientFactory
from inbox.services.webhook import authenticate_delivery, parse_delivery, process_delivery

router = APIRouter(prefix="/webhook", tags=["webhook"])

logger = logging.getLogger(__name__)


@router.post("/{channel_id}")
async def receive_webhook(
    channel_id: int,
    request: Request,
    db: Session = Depends(get_db),
    hub: EventHub = Depends(get_event_hub),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> dict:
    """Verify and process a LINE delivery.

    Once the delivery is authenticated the answer is always 200, whatever
    happened to individual events, so LINE does not redeliver.
    """

    channel = db.get(Channel, channel_id)
    if channel is None or not channel.is_active:
        raise NotFoundError("Channel not found")

    body = await request.body()
    authenticate_delivery(channel, body, request.headers.get("x-line-signature"))

    header_channel_id = request.headers.get("x-line-channel-id")
    if header_channel_id and header_channel_id != channel.line_channel_id:
        logger.warning(
            "Skipping delivery for LINE channel %s sent to channel %s (%s)",
            header_channel_id,
            channel.id,
            channel.line_channel_id,
        )
        return {"success": True, "skipped": True}

    delivery = parse_delivery(body)

    report = await process_delivery(
        db, hub, client_factory(channel.access_token), channel, delivery
    )
    return {"success": True, **report.as_dict()}
