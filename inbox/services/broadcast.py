"""Broadcast campaigns: audience selection, batching and accounting."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable, Iterator, NamedTuple, Sequence, TypeVar

import pydantic
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from inbox.config import get_settings
from inbox.core.clock import utcnow
from inbox.core.errors import ConflictError, ProviderError, ValidationError
from inbox.database import get_db_session, run_with_retry_async
from inbox.models import (
    Broadcast,
    BroadcastRecipient,
    BroadcastStatus,
    BroadcastTarget,
    BroadcastType,
    Channel,
    Conversation,
    FollowStatus,
    RecipientStatus,
    RemoteSourceType,
    RemoteUser,
    User,
    conversation_tags,
)
from inbox.monitoring.metrics import broadcast_batches_total, broadcast_recipients_total
from inbox.schemas import BroadcastCreate, BroadcastSendRequest
from inbox.schemas.payloads import FlexPayload, ImagePayload, MessagePayload, TextPayload, parse_payload
from inbox.services.dispatcher import normalize_media_url
from inbox.services.line_client import LineClient, LineClientFactory

logger = logging.getLogger(__name__)

settings = get_settings()

T = TypeVar("T")

# only 1:1 chats can be multicast to
PUSH_USER_ID_RE = re.compile(r"^U[a-f0-9]{32}$")

Sleep = Callable[[float], Awaitable[None]]

CLAIMABLE_STATUSES = (BroadcastStatus.DRAFT, BroadcastStatus.SCHEDULED)


class Recipient(NamedTuple):
    remote_user_id: int
    line_user_id: str
    display_name: str | None


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def final_status(sent_count: int, failed_count: int) -> BroadcastStatus:
    """``failed`` only when something was attempted and nothing got through."""

    if sent_count == 0 and failed_count > 0:
        return BroadcastStatus.FAILED
    return BroadcastStatus.COMPLETED


def build_broadcast_payloads(request: BroadcastSendRequest) -> list[MessagePayload]:
    """Payloads of a broadcast, from ``messages`` or from ``message_type`` and ``content``."""

    if request.messages:
        if len(request.messages) > settings.broadcast_max_messages:
            raise ValidationError(
                f"A broadcast carries at most {settings.broadcast_max_messages} messages"
            )
        try:
            payloads = [parse_payload(item) for item in request.messages]
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid broadcast message: {exc.errors()[0]['msg']}") from exc
        for payload in payloads:
            payload.to_line()
        return payloads

    if not request.message_type or request.content in (None, "", {}):
        raise ValidationError("messages, or message_type with content, is required")

    content = request.content
    if request.message_type == "text":
        if not isinstance(content, str):
            raise ValidationError("Text broadcasts need string content")
        return [TextPayload(text=content)]
    if request.message_type == "image":
        if not isinstance(content, str):
            raise ValidationError("Image broadcasts need the image URL as content")
        return [ImagePayload(url=normalize_media_url(content))]

    if isinstance(content, str):
        try:
            content = json.loads(content)
        except ValueError as exc:
            raise ValidationError("Flex content is not valid JSON") from exc
    if not isinstance(content, dict):
        raise ValidationError("Flex content must be a JSON object")
    return [FlexPayload(alt_text=request.alt_text or "[Flex Message]", contents=content)]


def _summary(payload: MessagePayload) -> str:
    columns = payload.columns()
    return columns["content"] or columns["media_url"] or payload.preview()


def select_push_audience(
    db: Session,
    channel: Channel,
    *,
    limit: int = 0,
    tag_ids: Sequence[int] | None = None,
) -> list[Recipient]:
    """Users a push broadcast goes to, oldest first.

    Groups, rooms and users who unfollowed or blocked the account are left
    out. ``tag_ids`` narrows the audience to users whose conversation carries
    one of the tags; ``limit`` 0 means everyone.
    """

    stmt = select(RemoteUser.id, RemoteUser.line_user_id, RemoteUser.display_name, RemoteUser.created_at).where(
        RemoteUser.channel_id == channel.id,
        RemoteUser.source_type == RemoteSourceType.USER,
        RemoteUser.follow_status.not_in([FollowStatus.UNFOLLOWED, FollowStatus.BLOCKED]),
    )
    if tag_ids:
        stmt = (
            stmt.join(Conversation, Conversation.remote_user_id == RemoteUser.id)
            .join(conversation_tags, conversation_tags.c.conversation_id == Conversation.id)
            .where(conversation_tags.c.tag_id.in_(list(tag_ids)))
            .distinct()
        )
    stmt = stmt.order_by(RemoteUser.created_at.asc(), RemoteUser.id.asc())

    audience: list[Recipient] = []
    for row in db.execute(stmt):
        if not PUSH_USER_ID_RE.match(row.line_user_id):
            continue
        audience.append(Recipient(row.id, row.line_user_id, row.display_name))
        if limit and len(audience) >= limit:
            break
    return audience


def estimate_followers(db: Session, channel: Channel) -> int:
    """Known following users; LINE does not report who an official broadcast reached."""

    stmt = select(func.count(RemoteUser.id)).where(
        RemoteUser.channel_id == channel.id,
        RemoteUser.source_type == RemoteSourceType.USER,
        RemoteUser.follow_status == FollowStatus.FOLLOWING,
    )
    return int(db.execute(stmt).scalar_one())


def audience_for(db: Session, broadcast: Broadcast) -> list[Recipient]:
    tag_ids = broadcast.target_tag_ids if broadcast.target_type == BroadcastTarget.TAGGED else None
    return select_push_audience(
        db, broadcast.channel, limit=broadcast.recipient_limit, tag_ids=tag_ids
    )


def create_broadcast(
    db: Session,
    channel: Channel,
    request: BroadcastSendRequest,
    payloads: Sequence[MessagePayload],
    *,
    user: User | None = None,
) -> Broadcast:
    """Persist a campaign in ``draft`` (or ``scheduled``) before anything is sent."""

    target_type = BroadcastTarget.ALL
    tag_ids: list[int] = []
    scheduled_at = None
    if isinstance(request, BroadcastCreate):
        target_type = request.target_type
        tag_ids = list(request.target_tag_ids)
        scheduled_at = request.scheduled_at
    if target_type == BroadcastTarget.TAGGED and not tag_ids:
        raise ValidationError("target_tag_ids is required for tagged broadcasts")

    broadcast = Broadcast(
        channel_id=channel.id,
        created_by_id=user.id if user is not None else None,
        broadcast_type=request.broadcast_type,
        target_type=target_type,
        target_tag_ids=tag_ids or None,
        message_type=payloads[0].message_type,
        content=_summary(payloads[0]),
        payloads=[payload.model_dump(mode="json") for payload in payloads],
        recipient_limit=request.limit,
        delay_ms=request.delay_ms if request.delay_ms is not None else settings.broadcast_default_delay_ms,
        status=BroadcastStatus.SCHEDULED if scheduled_at else BroadcastStatus.DRAFT,
        scheduled_at=scheduled_at,
    )
    db.add(broadcast)
    db.commit()
    db.refresh(broadcast)
    return broadcast


async def _run_official(
    db: Session, client: LineClient, broadcast: Broadcast, messages: list[dict]
) -> None:
    estimate = estimate_followers(db, broadcast.channel)
    try:
        await client.broadcast(messages)
    except ProviderError as exc:
        broadcast_batches_total.labels(BroadcastType.OFFICIAL.value, "failed").inc()
        logger.warning("Official broadcast %s rejected: %s", broadcast.id, exc.detail)

        def _failed(session: Session) -> None:
            broadcast.target_count = estimate
            broadcast.failed_count = estimate
            broadcast.error_message = exc.detail
            broadcast.status = BroadcastStatus.FAILED
            broadcast.completed_at = utcnow()

        await run_with_retry_async(db, _failed)
        return

    broadcast_batches_total.labels(BroadcastType.OFFICIAL.value, "sent").inc()

    def _sent(session: Session) -> None:
        broadcast.target_count = estimate
        broadcast.sent_count = estimate
        broadcast.status = BroadcastStatus.COMPLETED
        broadcast.completed_at = utcnow()

    await run_with_retry_async(db, _sent)


async def _run_push(
    db: Session,
    client: LineClient,
    broadcast: Broadcast,
    messages: list[dict],
    audience: Sequence[Recipient],
    *,
    batch_size: int,
    sleep: Sleep,
) -> None:
    broadcast_id = broadcast.id
    channel_id = broadcast.channel_id
    delay = max(broadcast.delay_ms, 0) / 1000

    def _target(session: Session) -> None:
        broadcast.target_count = len(audience)

    await run_with_retry_async(db, _target)

    for index, batch in enumerate(chunked(audience, batch_size)):
        if index and delay:
            await sleep(delay)

        error: str | None = None
        try:
            await client.multicast([recipient.line_user_id for recipient in batch], messages)
        except ProviderError as exc:
            error = exc.detail
            logger.warning(
                "Broadcast %s batch %s (%s recipients) rejected: %s",
                broadcast_id,
                index + 1,
                len(batch),
                error,
            )
        outcome = RecipientStatus.FAILED if error else RecipientStatus.SENT
        broadcast_batches_total.labels(BroadcastType.PUSH.value, outcome.value).inc()
        broadcast_recipients_total.labels(outcome.value).inc(len(batch))
        moment = utcnow()

        def _record(session: Session) -> None:
            for recipient in batch:
                session.add(
                    BroadcastRecipient(
                        broadcast_id=broadcast_id,
                        channel_id=channel_id,
                        remote_user_id=recipient.remote_user_id,
                        line_user_id=recipient.line_user_id,
                        display_name=recipient.display_name,
                        status=outcome,
                        error_message=error,
                        sent_at=moment if error is None else None,
                    )
                )
            if error is None:
                broadcast.sent_count += len(batch)
            else:
                broadcast.failed_count += len(batch)
                broadcast.error_message = error

        await run_with_retry_async(db, _record)

    def _finish(session: Session) -> None:
        broadcast.status = final_status(broadcast.sent_count, broadcast.failed_count)
        broadcast.completed_at = utcnow()

    await run_with_retry_async(db, _finish)


async def run_broadcast(
    db: Session,
    client: LineClient,
    broadcast: Broadcast,
    *,
    audience: Sequence[Recipient] | None = None,
    batch_size: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Broadcast:
    """Send a campaign to completion.

    Push batches go out one after another with ``delay_ms`` between them.
    A rejected batch is recorded against its recipients and the run moves on;
    counters are committed after every batch so pollers see progress. There
    is no cancellation once a run has started.
    """

    messages = [parse_payload(item).to_line() for item in broadcast.payloads]
    started_at = utcnow()

    def _start(session: Session) -> int:
        # sent_at is only ever set here, so a second run finds no row to take
        result = session.execute(
            update(Broadcast)
            .where(
                Broadcast.id == broadcast.id,
                Broadcast.sent_at.is_(None),
                Broadcast.status.in_(CLAIMABLE_STATUSES + (BroadcastStatus.SENDING,)),
            )
            .values(
                status=BroadcastStatus.SENDING,
                sent_at=started_at,
                sent_count=0,
                failed_count=0,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    if await run_with_retry_async(db, _start) != 1:
        raise ConflictError(f"Broadcast {broadcast.id} has already been started")
    db.refresh(broadcast)
    logger.info("Broadcast %s started (%s)", broadcast.id, broadcast.broadcast_type.value)

    if broadcast.broadcast_type == BroadcastType.OFFICIAL:
        await _run_official(db, client, broadcast, messages)
    else:
        recipients = list(audience) if audience is not None else audience_for(db, broadcast)
        await _run_push(
            db,
            client,
            broadcast,
            messages,
            recipients,
            batch_size=batch_size or settings.broadcast_batch_size,
            sleep=sleep,
        )

    db.refresh(broadcast)
    logger.info(
        "Broadcast %s finished %s: %s sent, %s failed of %s",
        broadcast.id,
        broadcast.status.value,
        broadcast.sent_count,
        broadcast.failed_count,
        broadcast.target_count,
    )
    return broadcast


def claim_broadcast(db: Session, broadcast: Broadcast) -> bool:
    """Move a draft or scheduled campaign to ``sending``.

    The status check and the write are one statement, so of two concurrent
    callers only one gets ``True``.
    """

    result = db.execute(
        update(Broadcast)
        .where(Broadcast.id == broadcast.id, Broadcast.status.in_(CLAIMABLE_STATUSES))
        .values(status=BroadcastStatus.SENDING)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(broadcast)
    return result.rowcount == 1


def prepare_send(db: Session, broadcast: Broadcast) -> list[Recipient] | None:
    """Check a campaign can start and claim it for sending.

    Returns the push audience (``None`` for official). Once this returns the
    campaign is ``sending`` and must be handed to exactly one run.
    """

    if broadcast.status not in CLAIMABLE_STATUSES:
        raise ValidationError(f"Broadcast is already {broadcast.status.value}")
    audience: list[Recipient] | None = None
    if broadcast.broadcast_type == BroadcastType.PUSH:
        audience = audience_for(db, broadcast)
        if not audience:
            raise ValidationError("No eligible recipients for this broadcast")
    if not claim_broadcast(db, broadcast):
        raise ValidationError(f"Broadcast is already {broadcast.status.value}")
    return audience


async def send_now(
    db: Session,
    client: LineClient,
    channel: Channel,
    request: BroadcastSendRequest,
    *,
    user: User | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Broadcast:
    """Create a campaign and run it within the request.

    A push broadcast without eligible recipients is refused before any
    record is written.
    """

    payloads = build_broadcast_payloads(request)
    audience: list[Recipient] | None = None
    if request.broadcast_type == BroadcastType.PUSH:
        audience = select_push_audience(db, channel, limit=request.limit)
        if not audience:
            raise ValidationError("No eligible recipients for this broadcast")

    broadcast = create_broadcast(db, channel, request, payloads, user=user)
    return await run_broadcast(db, client, broadcast, audience=audience, sleep=sleep)


class BroadcastRunner:
    """Runs persisted campaigns outside the request that started them.

    Each run opens its own session, so it keeps going after the triggering
    response has been sent.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        client_factory: LineClientFactory,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.sleep = sleep

    async def run(self, broadcast_id: int) -> None:
        with get_db_session(self.session_factory) as db:
            broadcast = db.get(Broadcast, broadcast_id)
            if broadcast is None:
                logger.warning("Broadcast %s vanished before it could run", broadcast_id)
                return
            client = self.client_factory(broadcast.channel.access_token)
            try:
                await run_broadcast(db, client, broadcast, sleep=self.sleep)
            except ConflictError:
                logger.warning("Broadcast %s is already running, skipping this run", broadcast_id)
            except Exception:  # noqa: BLE001 - the run must leave a terminal status behind
                logger.exception("Broadcast %s aborted", broadcast_id)
                db.rollback()
                broadcast = db.get(Broadcast, broadcast_id)
                if broadcast is not None:
                    broadcast.status = (
                        BroadcastStatus.COMPLETED if broadcast.sent_count else BroadcastStatus.FAILED
                    )
                    broadcast.error_message = broadcast.error_message or "Broadcast run aborted"
                    broadcast.completed_at = utcnow()
                    db.commit()
