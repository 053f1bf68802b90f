"""Processing of LINE webhook deliveries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pydantic
from sqlalchemy.orm import Session

from inbox.config import get_settings
from inbox.core.errors import AuthenticationError, ProviderError, ValidationError
from inbox.database import run_with_retry_async
from inbox.models import Channel, FollowStatus, MessageSource, MessageType
from inbox.monitoring.metrics import webhook_events_total
from inbox.schemas.webhook import LineEvent, WebhookDelivery
from inbox.services import auto_reply, dispatcher
from inbox.services.event_hub import EventHub
from inbox.services.ingest import IngestResult, ingest_event
from inbox.services.line_client import LineClient
from inbox.services.notifications import notify_message_flow
from inbox.services.resolver import find_remote_user, resolve_user
from inbox.services.signature import verify_signature

logger = logging.getLogger(__name__)

settings = get_settings()

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
FAILED = "failed"


@dataclass
class DeliveryReport:
    outcomes: list[str] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return sum(1 for item in self.outcomes if item == outcome)

    def as_dict(self) -> dict[str, Any]:
        return {
            "events": len(self.outcomes),
            PROCESSED: self.count(PROCESSED),
            DUPLICATE: self.count(DUPLICATE),
            IGNORED: self.count(IGNORED),
            FAILED: self.count(FAILED),
        }


def authenticate_delivery(channel: Channel, body: bytes, signature: str | None) -> None:
    """Check ``x-line-signature`` against the raw body.

    Unsigned deliveries are rejected unless ``WEBHOOK_ALLOW_UNSIGNED`` is set.
    """

    if not signature:
        if settings.webhook_allow_unsigned:
            logger.warning("Accepting unsigned webhook delivery for channel %s", channel.id)
            return
        raise AuthenticationError("Missing x-line-signature header")
    if not verify_signature(body, signature, channel.channel_secret):
        raise AuthenticationError("Invalid signature")


def parse_delivery(body: bytes) -> WebhookDelivery:
    try:
        return WebhookDelivery.model_validate_json(body)
    except pydantic.ValidationError as exc:
        raise ValidationError("Malformed webhook body") from exc


async def _auto_reply(
    db: Session,
    hub: EventHub,
    client: LineClient,
    channel: Channel,
    result: IngestResult,
    reply_token: str | None,
) -> None:
    rule = auto_reply.match(db, channel, result.message.content or "")
    if rule is None:
        return
    logger.info("Auto-reply rule %s matched in conversation %s", rule.id, result.conversation.id)
    await dispatcher.send(
        db,
        hub,
        client,
        channel,
        result.conversation,
        auto_reply.rule_payload(rule),
        source=MessageSource.AUTO_REPLY,
        reply_token=reply_token,
    )


async def _on_message(
    db: Session, hub: EventHub, client: LineClient, channel: Channel, event: LineEvent
) -> str:
    result = await ingest_event(db, channel, event, client)
    if result.duplicate:
        return DUPLICATE
    await notify_message_flow(
        hub,
        db,
        channel,
        result.conversation,
        result.message,
        created=result.conversation_created,
    )
    if result.message.message_type == MessageType.TEXT:
        await _auto_reply(db, hub, client, channel, result, event.reply_token)
    return PROCESSED


async def _on_follow(db: Session, client: LineClient, channel: Channel, event: LineEvent) -> str:
    if event.source is None or not event.source.user_id:
        return IGNORED
    await resolve_user(db, channel, event.source.user_id, client, mark_following=True)
    return PROCESSED


async def _on_unfollow(db: Session, channel: Channel, event: LineEvent) -> str:
    if event.source is None or not event.source.user_id:
        return IGNORED
    remote_user = find_remote_user(db, channel.id, event.source.user_id)
    if remote_user is None:
        return IGNORED

    def _update(session: Session) -> None:
        remote_user.follow_status = FollowStatus.UNFOLLOWED

    await run_with_retry_async(db, _update)
    return PROCESSED


async def handle_event(
    db: Session, hub: EventHub, client: LineClient, channel: Channel, event: LineEvent
) -> str:
    if event.type == "message":
        return await _on_message(db, hub, client, channel, event)
    if event.type == "follow":
        return await _on_follow(db, client, channel, event)
    if event.type == "unfollow":
        return await _on_unfollow(db, channel, event)
    logger.debug("Ignoring %s event on channel %s", event.type, channel.id)
    return IGNORED


async def process_delivery(
    db: Session,
    hub: EventHub,
    client: LineClient,
    channel: Channel,
    delivery: WebhookDelivery,
) -> DeliveryReport:
    """Handle every event of a delivery in order.

    A failing event is logged and counted; it never stops the events after it.
    """

    report = DeliveryReport()
    for raw in delivery.events:
        event_type = str(raw.get("type") or "unknown")
        outcome = FAILED
        try:
            event = LineEvent.model_validate(raw)
            outcome = await handle_event(db, hub, client, channel, event)
        except ProviderError as exc:
            db.rollback()
            logger.warning(
                "LINE rejected a call while handling %s event on channel %s: %s",
                event_type,
                channel.id,
                exc.detail,
            )
        except Exception:  # noqa: BLE001 - one bad event must not fail the delivery
            db.rollback()
            logger.exception("Failed to process %s event on channel %s", event_type, channel.id)
        webhook_events_total.labels(event_type, outcome).inc()
        report.outcomes.append(outcome)
    return report
