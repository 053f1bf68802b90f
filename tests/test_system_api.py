from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketDisconnect

from conftest import auth_headers
from inbox.core.security import create_access_token
from inbox.monitoring.metrics import webhook_events_total


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/").json() == {"message": "Welcome to the LINE Inbox API"}


def test_metrics_exposes_counters(client):
    webhook_events_total.labels("message", "processed").inc(0)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "# TYPE inbox_webhook_events_total counter" in response.text
    assert "inbox_realtime_active_connections" in response.text


def test_event_stream_requires_a_token(client):
    assert client.get("/api/events").status_code == 401
    assert client.get("/api/events", params={"token": "garbage"}).status_code == 401


def test_websocket_connects_and_answers_ping(client, owner):
    token = create_access_token({"sub": str(owner.id)})

    with client.websocket_connect(f"/ws/events?token={token}") as websocket:
        connected = websocket.receive_json()
        websocket.send_text("ping")
        pong = websocket.receive_json()

    assert connected["type"] == "connected"
    assert connected["data"] == {"user_id": owner.id}
    assert pong["type"] == "pong"


def test_websocket_without_valid_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/events?token=garbage") as websocket:
            websocket.receive_json()


def test_websocket_accepts_bearer_header_and_receives_events(client, owner):
    with client.websocket_connect("/ws/events", headers=auth_headers(owner)) as websocket:
        websocket.receive_json()
        hub = client.app.state.event_hub
        client.portal.call(hub.publish, owner.id, "conversation_update", {"id": 1})
        frame = websocket.receive_json()

    assert frame["type"] == "conversation_update"
    assert frame["data"] == {"id": 1}
