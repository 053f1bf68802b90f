"""Client for the LINE Messaging API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

import httpx

from inbox.config import get_settings
from inbox.core.errors import ProviderError
from inbox.monitoring.metrics import provider_requests_total

logger = logging.getLogger(__name__)

settings = get_settings()


def _provider_error(response: httpx.Response) -> ProviderError:
    message = response.text or response.reason_phrase
    details: list[Any] = []
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or message
        if isinstance(body.get("details"), list):
            details = body["details"]
    return ProviderError(message, provider_status=response.status_code, details=details)


class LineClient:
    """Messaging API calls made with one channel access token.

    Every call is bounded by ``timeout``; rejections and transport failures are
    raised as :class:`ProviderError` carrying LINE's own error message.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        data_base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.base_url = (base_url or settings.line_api_base_url).rstrip("/")
        self.data_base_url = (data_base_url or settings.line_data_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.line_request_timeout_seconds
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._get_headers(), json=json)
        except httpx.TimeoutException as exc:
            provider_requests_total.labels(endpoint, "timeout").inc()
            raise ProviderError(f"LINE API did not answer within {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            provider_requests_total.labels(endpoint, "error").inc()
            raise ProviderError(f"LINE API request failed: {exc}") from exc

        if response.is_error:
            provider_requests_total.labels(endpoint, "rejected").inc()
            error = _provider_error(response)
            logger.warning(
                "LINE %s rejected with %s: %s", endpoint, response.status_code, error.detail
            )
            raise error

        provider_requests_total.labels(endpoint, "ok").inc()
        return response

    async def push_message(self, to: str, messages: Sequence[dict[str, Any]]) -> None:
        """
        Send messages to one user, group or room.

        Args:
            to: LINE user, group or room id
            messages: Wire message objects (at most five)

        Raises:
            ProviderError: If LINE rejects the call or cannot be reached
        """
        await self._request(
            "POST", "push", f"{self.base_url}/message/push", json={"to": to, "messages": list(messages)}
        )

    async def reply_message(self, reply_token: str, messages: Sequence[dict[str, Any]]) -> None:
        """
        Answer an inbound event with its single-use reply token.

        Raises:
            ProviderError: If the token is invalid, expired or already used
        """
        await self._request(
            "POST",
            "reply",
            f"{self.base_url}/message/reply",
            json={"replyToken": reply_token, "messages": list(messages)},
        )

    async def multicast(self, to: Sequence[str], messages: Sequence[dict[str, Any]]) -> None:
        """
        Send messages to up to 500 users in one call.

        Raises:
            ProviderError: If LINE rejects the batch
        """
        await self._request(
            "POST",
            "multicast",
            f"{self.base_url}/message/multicast",
            json={"to": list(to), "messages": list(messages)},
        )

    async def broadcast(self, messages: Sequence[dict[str, Any]]) -> None:
        """Send messages to every follower using the account's broadcast quota."""

        await self._request(
            "POST", "broadcast", f"{self.base_url}/message/broadcast", json={"messages": list(messages)}
        )

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        """
        Get the profile of a user who added the account.

        Returns:
            ``displayName``, ``pictureUrl``, ``statusMessage`` and ``language`` when shared
        """
        response = await self._request("GET", "profile", f"{self.base_url}/profile/{user_id}")
        return response.json()

    async def get_group_summary(self, group_id: str) -> dict[str, Any]:
        response = await self._request("GET", "group_summary", f"{self.base_url}/group/{group_id}/summary")
        return response.json()

    async def get_group_member_count(self, group_id: str) -> int:
        response = await self._request(
            "GET", "group_member_count", f"{self.base_url}/group/{group_id}/members/count"
        )
        return int(response.json().get("count", 0))

    async def get_group_member_profile(self, group_id: str, user_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET", "group_member_profile", f"{self.base_url}/group/{group_id}/member/{user_id}"
        )
        return response.json()

    async def get_room_member_profile(self, room_id: str, user_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET", "room_member_profile", f"{self.base_url}/room/{room_id}/member/{user_id}"
        )
        return response.json()

    async def get_bot_info(self) -> dict[str, Any]:
        response = await self._request("GET", "info", f"{self.base_url}/info")
        return response.json()

    async def get_message_content(self, message_id: str) -> tuple[bytes, str]:
        """
        Download the binary content of an inbound image, video, audio or file message.

        Returns:
            Raw bytes and the content type reported by LINE
        """
        response = await self._request(
            "GET", "content", f"{self.data_base_url}/message/{message_id}/content"
        )
        return response.content, response.headers.get("content-type", "application/octet-stream")


LineClientFactory = Callable[[str], LineClient]
"""Builds a client for a channel access token."""


def default_client_factory(access_token: str) -> LineClient:
    return LineClient(access_token)


def message_content_url(message_id: str) -> str:
    """Deferred reference stored for inbound media until the bytes are fetched."""

    return f"{settings.line_data_api_base_url.rstrip('/')}/message/{message_id}/content"
