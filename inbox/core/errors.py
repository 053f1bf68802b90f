"""Domain errors raised by services and rendered by the API layer."""

from __future__ import annotations

from typing import Any


class InboxError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None, **extra: Any) -> None:
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "detail": self.detail}
        payload.update(self.extra)
        return payload


class AuthenticationError(InboxError):
    """Bad or missing signature, bearer token or bot token."""

    status_code = 401
    default_detail = "Could not validate credentials"


class ValidationError(InboxError):
    """Request is well formed HTTP but semantically unusable."""

    status_code = 400
    default_detail = "Invalid request"


class AuthorizationError(InboxError):
    status_code = 403
    default_detail = "Insufficient permissions"


class NotFoundError(InboxError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(InboxError):
    status_code = 409
    default_detail = "Already exists"


class ExpiredError(InboxError):
    status_code = 410
    default_detail = "Expired"


class ProviderError(InboxError):
    """The LINE Messaging API rejected a call or could not be reached."""

    status_code = 502
    default_detail = "LINE API request failed"

    def __init__(
        self,
        detail: str | None = None,
        *,
        provider_status: int | None = None,
        details: list[Any] | None = None,
    ) -> None:
        super().__init__(detail, provider_status=provider_status, provider_details=details or [])
        self.provider_status = provider_status
        self.details = details or []


class TransientInfraError(InboxError):
    status_code = 503
    default_detail = "Service temporarily unavailable"


__all__ = [
    "InboxError",
    "AuthenticationError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
    "ProviderError",
    "TransientInfraError",
]
