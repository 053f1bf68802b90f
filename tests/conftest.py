"""Shared pytest fixtures for inbox tests."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from inbox.api.deps import get_line_client_factory
from inbox.core.security import create_access_token
from inbox.database import get_db, get_session_factory
from inbox.main import app
from inbox.models import Base, Channel, ChannelStatus, RemoteUser, User
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClient

CHANNEL_SECRET = "test-channel-secret"
LINE_CHANNEL_ID = "1650000001"

Responder = Callable[[httpx.Request], httpx.Response]


def line_user_id(index: int) -> str:
    """A syntactically valid LINE user id."""

    return "U" + f"{index:032x}"


class FakeLineAPI:
    """In-memory stand-in for the Messaging API behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.profiles: dict[str, dict[str, Any]] = {}
        self.overrides: dict[str, Responder] = {}

    def fail(self, path_suffix: str, status_code: int = 400, message: str = "Invalid request") -> None:
        self.overrides[path_suffix] = lambda request: httpx.Response(
            status_code, json={"message": message, "details": []}
        )

    def respond(self, path_suffix: str, responder: Responder) -> None:
        self.overrides[path_suffix] = responder

    def calls(self, path_suffix: str) -> list[dict[str, Any]]:
        bodies = []
        for request in self.requests:
            if request.url.path.endswith(path_suffix):
                bodies.append(json.loads(request.content) if request.content else {})
        return bodies

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for suffix, responder in self.overrides.items():
            if path.endswith(suffix):
                return responder(request)

        if "/profile/" in path:
            user_id = path.rsplit("/", 1)[-1]
            if user_id in self.profiles:
                return httpx.Response(200, json=self.profiles[user_id])
            return httpx.Response(404, json={"message": "Not found"})
        if path.endswith("/summary"):
            return httpx.Response(200, json={"groupId": path.split("/")[-2], "groupName": "Study Group"})
        if path.endswith("/members/count"):
            return httpx.Response(200, json={"count": 3})
        if "/member/" in path:
            return httpx.Response(200, json={"userId": path.rsplit("/", 1)[-1], "displayName": "Member"})
        if path.endswith("/info"):
            return httpx.Response(200, json={"basicId": "@inbox", "pictureUrl": "https://example.com/bot.png"})
        if path.endswith("/content"):
            return httpx.Response(200, content=b"\xff\xd8binary", headers={"content-type": "image/jpeg"})
        return httpx.Response(200, json={})


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def line_api() -> FakeLineAPI:
    return FakeLineAPI()


@pytest.fixture()
def client_factory(line_api) -> Callable[[str], LineClient]:
    def factory(access_token: str) -> LineClient:
        return LineClient(access_token, transport=httpx.MockTransport(line_api.handler))

    return factory


@pytest.fixture()
def line_client(client_factory) -> LineClient:
    return client_factory("test-access-token")


@pytest.fixture()
def hub() -> EventHub:
    return EventHub()


@pytest.fixture()
def client(session_factory, client_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database and LINE dependencies overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_line_client_factory] = lambda: client_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_user(db: Session, email: str, *, name: str | None = None, bot_api_token: str | None = None) -> User:
    user = User(email=email, name=name or email.split("@")[0], bot_api_token=bot_api_token)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_channel(
    db: Session,
    owner: User,
    *,
    line_channel_id: str = LINE_CHANNEL_ID,
    status: ChannelStatus = ChannelStatus.ACTIVE,
) -> Channel:
    channel = Channel(
        owner_id=owner.id,
        name="Main account",
        line_channel_id=line_channel_id,
        channel_secret=CHANNEL_SECRET,
        access_token="test-access-token",
        status=status,
    )
    db.add(channel)
    db.commit()
    db.refresh(channel)
    return channel


def create_remote_user(db: Session, channel: Channel, line_id: str, **fields: Any) -> RemoteUser:
    remote_user = RemoteUser(channel_id=channel.id, line_user_id=line_id, **fields)
    db.add(remote_user)
    db.commit()
    db.refresh(remote_user)
    return remote_user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def owner(db_session) -> User:
    return create_user(db_session, "owner@example.com", name="Owner", bot_api_token="bot-token-1")


@pytest.fixture()
def channel(db_session, owner) -> Channel:
    return create_channel(db_session, owner)
