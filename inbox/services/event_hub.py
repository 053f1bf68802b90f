"""Per-user registry of open dashboard connections and best-effort fan-out."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Protocol, Set

from fastapi.websockets import WebSocket, WebSocketState

from inbox.core.clock import utcnow
from inbox.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
)

logger = logging.getLogger(__name__)


def build_frame(event_type: str, payload: Any) -> dict[str, Any]:
    return {"type": event_type, "data": payload, "timestamp": utcnow().isoformat()}


def format_sse(frame: dict[str, Any]) -> str:
    return f"data: {json.dumps(frame, default=str, ensure_ascii=False)}\n\n"


class EventConnection(Protocol):
    transport: str

    async def send(self, frame: dict[str, Any]) -> None: ...


class QueueConnection:
    """Connection drained by a streaming response; a full buffer counts as broken."""

    transport = "sse"

    def __init__(self, maxsize: int = 256) -> None:
        self.queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, frame: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("stream closed")
        self.queue.put_nowait(frame)

    async def next_frame(self, timeout: float) -> dict[str, Any] | None:
        """Wait for the next frame; ``None`` means the hub closed the stream."""

        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class WebSocketConnection:
    transport = "websocket"

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, frame: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionError("websocket is not connected")
        await self.websocket.send_json(frame)

    def close(self) -> None:
        return None


class EventHub:
    """Tracks live connections per user and fans events out to them.

    One instance is built at startup and handed to whatever needs to publish.
    ``publish`` never raises: a failed write is logged, counted and the
    connection is dropped from the registry so later events skip it.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Set[EventConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, user_id: int, connection: EventConnection) -> None:
        async with self._lock:
            sockets = self._connections[user_id]
            if connection in sockets:
                return
            sockets.add(connection)
        realtime_connections.labels(connection.transport).inc()

    async def unregister(self, user_id: int, connection: EventConnection) -> None:
        async with self._lock:
            removed = self._discard(user_id, connection)
        if removed:
            realtime_connections.labels(connection.transport).dec()

    def _discard(self, user_id: int, connection: EventConnection) -> bool:
        sockets = self._connections.get(user_id)
        if not sockets or connection not in sockets:
            return False
        sockets.discard(connection)
        if not sockets:
            self._connections.pop(user_id, None)
        return True

    def connection_count(self, user_id: int | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(sockets) for sockets in self._connections.values())

    async def publish(self, user_id: int, event_type: str, payload: Any) -> None:
        await self.publish_many([user_id], event_type, payload)

    async def publish_many(self, user_ids: Iterable[int], event_type: str, payload: Any) -> None:
        recipients = set(user_ids)
        if not recipients:
            return
        async with self._lock:
            targets = [
                (user_id, list(self._connections.get(user_id, ())))
                for user_id in recipients
            ]
        if not any(connections for _, connections in targets):
            return

        frame = build_frame(event_type, payload)
        realtime_events_total.labels(event_type).inc()
        broken: list[tuple[int, EventConnection]] = []
        for user_id, connections in targets:
            for connection in connections:
                try:
                    await connection.send(frame)
                except Exception:  # noqa: BLE001 - one bad connection must not stop the others
                    realtime_publish_errors_total.labels(connection.transport).inc()
                    logger.warning(
                        "Dropping %s connection for user %s after failed %s write",
                        connection.transport,
                        user_id,
                        event_type,
                        exc_info=logger.isEnabledFor(logging.DEBUG),
                    )
                    broken.append((user_id, connection))

        for user_id, connection in broken:
            await self.unregister(user_id, connection)
            close = getattr(connection, "close", None)
            if close is not None:
                close()

    async def close(self) -> None:
        """Detach every connection; used at shutdown."""

        async with self._lock:
            items = [
                (user_id, connection)
                for user_id, sockets in self._connections.items()
                for connection in sockets
            ]
            self._connections.clear()
        for _, connection in items:
            realtime_connections.labels(connection.transport).dec()
            close = getattr(connection, "close", None)
            if close is not None:
                close()
