"""Realtime event streams for dashboards: Server-Sent Events and WebSocket."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, WebSocket, status
from fastapi.responses import StreamingResponse
from fastapi.websockets import WebSocketDisconnect

from inbox.api.deps import get_event_hub, get_stream_user, get_user_from_token
from inbox.config import get_settings
from inbox.core.errors import AuthenticationError
from inbox.database import get_db_session, get_session_factory
from inbox.models import User
from inbox.services.event_hub import (
    EventHub,
    QueueConnection,
    WebSocketConnection,
    build_frame,
    format_sse,
)

router = APIRouter(tags=["events"])
ws_router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

CONNECTED = "connected"
PING_COMMENT = ": ping\n\n"


async def iter_event_stream(
    hub: EventHub,
    user_id: int,
    connection: QueueConnection,
    *,
    ping_interval: float,
) -> AsyncIterator[str]:
    """Yield SSE chunks until the client goes away or the hub closes the stream."""

    await hub.register(user_id, connection)
    try:
        yield format_sse(build_frame(CONNECTED, {"user_id": user_id}))
        while True:
            try:
                frame = await connection.next_frame(ping_interval)
            except asyncio.TimeoutError:
                yield PING_COMMENT
                continue
            if frame is None:
                break
            yield format_sse(frame)
    finally:
        await hub.unregister(user_id, connection)
        connection.close()


@router.get("/events")
async def stream_events(
    current_user: User = Depends(get_stream_user),
    hub: EventHub = Depends(get_event_hub),
) -> StreamingResponse:
    connection = QueueConnection(maxsize=settings.event_stream_queue_size)
    stream = iter_event_stream(
        hub,
        current_user.id,
        connection,
        ping_interval=settings.event_stream_ping_seconds,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _resolve_user(websocket: WebSocket, session_factory) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session(session_factory) as db:
            return get_user_from_token(token, db)
    except AuthenticationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


@ws_router.websocket("/events")
async def websocket_events(
    websocket: WebSocket,
    session_factory=Depends(get_session_factory),
) -> None:
    """Same frames as the SSE stream; a text ``ping`` from the client is answered with ``pong``."""

    user = await _resolve_user(websocket, session_factory)
    if user is None:
        return

    hub: EventHub = websocket.app.state.event_hub
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    await hub.register(user.id, connection)
    try:
        await websocket.send_json(build_frame(CONNECTED, {"user_id": user.id}))
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "ping":
                await websocket.send_json(build_frame("pong", None))
    except WebSocketDisconnect:
        logger.debug("Event websocket closed for user %s", user.id)
    finally:
        await hub.unregister(user.id, connection)
