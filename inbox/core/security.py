"""Token helpers for dashboard and bot authentication."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Any, Dict

import jwt

from inbox.config import get_settings
from inbox.core.clock import utcnow
from inbox.core.errors import AuthenticationError

settings = get_settings()


def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token with an expiration time."""

    to_encode = data.copy()
    expire = utcnow() + (
        expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token."""

    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError() from exc
    return payload


def generate_token(nbytes: int = 32) -> str:
    """Opaque URL-safe token used for invitations and bot API access."""

    return secrets.token_urlsafe(nbytes)
