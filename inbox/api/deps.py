"""FastAPI dependencies for the API layer."""

from typing import Sequence

from fastapi import Depends, Query, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from inbox.config import get_settings
from inbox.core.errors import AuthenticationError, NotFoundError
from inbox.core.security import decode_access_token
from inbox.database import get_db, get_session_factory
from inbox.models import Capability, Channel, ChannelStatus, Conversation, User
from inbox.services.broadcast import BroadcastRunner
from inbox.services.event_hub import EventHub
from inbox.services.line_client import LineClientFactory, default_client_factory
from inbox.services.permissions import require_access

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise :class:`AuthenticationError`."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise AuthenticationError()

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise AuthenticationError() from None

    user = db.get(User, user_id)
    if user is None:
        raise AuthenticationError()
    return user


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    return get_user_from_token(token, db)


def get_stream_user(
    token: str | None = Query(default=None),
    bearer: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Like :func:`get_current_user`, also accepting ``?token=`` since EventSource cannot set headers."""

    credential = bearer or token
    if not credential:
        raise AuthenticationError("Not authenticated")
    return get_user_from_token(credential, db)


def get_event_hub(request: Request) -> EventHub:
    return request.app.state.event_hub


def get_line_client_factory() -> LineClientFactory:
    return default_client_factory


def get_broadcast_runner(
    session_factory=Depends(get_session_factory),
    client_factory: LineClientFactory = Depends(get_line_client_factory),
) -> BroadcastRunner:
    return BroadcastRunner(session_factory, client_factory)


def load_channel(db: Session, channel_id: int) -> Channel:
    channel = db.get(Channel, channel_id)
    if channel is None or channel.status == ChannelStatus.DELETED:
        raise NotFoundError("Channel not found")
    return channel


def require_channel(
    db: Session, user: User, channel_id: int, capability: Capability | Sequence[Capability] | None = None
) -> Channel:
    """Channel by id, or 404; 403 when the user may not act on it."""

    channel = load_channel(db, channel_id)
    require_access(db, user, channel, capability)
    return channel


def require_conversation(
    db: Session, user: User, conversation_id: int, capability: Capability | Sequence[Capability] | None = None
) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    require_channel(db, user, conversation.channel_id, capability)
    return conversation
