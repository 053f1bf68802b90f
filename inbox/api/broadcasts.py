"""Broadcast endpoints: one-shot sends and persisted campaigns."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from inbox.api.deps import (
    get_broadcast_runner,
    get_current_user,
    get_line_client_factory,
    require_channel,
)
from inbox.core.errors import NotFoundError
from inbox.database import get_db
from inbox.models import Broadcast, BroadcastRecipient, Capability, RecipientStatus, User
from inbox.schemas import (
    BroadcastCreate,
    BroadcastRead,
    BroadcastRecipientRead,
    BroadcastRunResult,
    BroadcastSendRequest,
)
from inbox.services import broadcast as broadcasts
from inbox.services.line_client import LineClientFactory

router = APIRouter(tags=["broadcasts"])


def _get_broadcast(db: Session, user: User, broadcast_id: int, capability: Capability | None = None) -> Broadcast:
    broadcast = db.get(Broadcast, broadcast_id)
    if broadcast is None:
        raise NotFoundError("Broadcast not found")
    require_channel(db, user, broadcast.channel_id, capability)
    return broadcast


def _run_result(broadcast: Broadcast) -> BroadcastRunResult:
    return BroadcastRunResult(
        id=broadcast.id,
        status=broadcast.status,
        target_count=broadcast.target_count,
        sent_count=broadcast.sent_count,
        failed_count=broadcast.failed_count,
        message_count=len(broadcast.payloads),
    )


@router.post("/broadcast/send", response_model=BroadcastRunResult)
async def send_broadcast(
    payload: BroadcastSendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> BroadcastRunResult:
    """Send a broadcast and answer once every batch has been attempted."""

    channel = require_channel(db, current_user, payload.channel_id, Capability.BROADCAST)
    broadcast = await broadcasts.send_now(
        db, client_factory(channel.access_token), channel, payload, user=current_user
    )
    return _run_result(broadcast)


@router.post("/broadcasts", response_model=BroadcastRead, status_code=status.HTTP_201_CREATED)
def create_broadcast(
    payload: BroadcastCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Broadcast:
    channel = require_channel(db, current_user, payload.channel_id, Capability.BROADCAST)
    payloads = broadcasts.build_broadcast_payloads(payload)
    return broadcasts.create_broadcast(db, channel, payload, payloads, user=current_user)


@router.get("/broadcasts", response_model=list[BroadcastRead])
def list_broadcasts(
    channel_id: int = Query(...),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Broadcast]:
    channel = require_channel(db, current_user, channel_id)
    stmt = (
        select(Broadcast)
        .where(Broadcast.channel_id == channel.id)
        .order_by(Broadcast.created_at.desc(), Broadcast.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


@router.get("/broadcasts/{broadcast_id}", response_model=BroadcastRead)
def get_broadcast(
    broadcast_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Broadcast:
    """Current state of a campaign; counters move while it is sending."""

    return _get_broadcast(db, current_user, broadcast_id)


@router.post(
    "/broadcasts/{broadcast_id}/send",
    response_model=BroadcastRead,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_broadcast(
    broadcast_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    runner: broadcasts.BroadcastRunner = Depends(get_broadcast_runner),
) -> Broadcast:
    """Queue a draft or scheduled campaign; poll ``GET /broadcasts/{id}`` for progress."""

    broadcast = _get_broadcast(db, current_user, broadcast_id, Capability.BROADCAST)
    broadcasts.prepare_send(db, broadcast)
    background_tasks.add_task(runner.run, broadcast.id)
    return broadcast


@router.get("/broadcasts/{broadcast_id}/recipients", response_model=list[BroadcastRecipientRead])
def list_recipients(
    broadcast_id: int,
    recipient_status: RecipientStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[BroadcastRecipient]:
    broadcast = _get_broadcast(db, current_user, broadcast_id)
    stmt = select(BroadcastRecipient).where(BroadcastRecipient.broadcast_id == broadcast.id)
    if recipient_status is not None:
        stmt = stmt.where(BroadcastRecipient.status == recipient_status)
    stmt = stmt.order_by(BroadcastRecipient.id.asc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())
