"""Shapes of LINE webhook deliveries.

Field names follow the LINE wire format; unknown fields are kept so that
newer event attributes do not break parsing.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _LineModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class LineSource(_LineModel):
    type: str = "user"
    user_id: str | None = Field(default=None, alias="userId")
    group_id: str | None = Field(default=None, alias="groupId")
    room_id: str | None = Field(default=None, alias="roomId")

    @property
    def chat_id(self) -> str | None:
        """Identifier of the conversation partner: the group or room, else the user."""

        if self.type == "group":
            return self.group_id
        if self.type == "room":
            return self.room_id
        return self.user_id


class LineMessage(_LineModel):
    id: str
    type: str
    text: str | None = None
    sticker_id: str | None = Field(default=None, alias="stickerId")
    package_id: str | None = Field(default=None, alias="packageId")
    title: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    file_name: str | None = Field(default=None, alias="fileName")
    duration: int | None = None
    alt_text: str | None = Field(default=None, alias="altText")
    contents: dict[str, Any] | None = None
    template: dict[str, Any] | None = None


class LineEvent(_LineModel):
    type: str
    source: LineSource | None = None
    message: LineMessage | None = None
    reply_token: str | None = Field(default=None, alias="replyToken")
    timestamp: int | None = None
    webhook_event_id: str | None = Field(default=None, alias="webhookEventId")


class WebhookDelivery(_LineModel):
    """Top level body. Events stay raw so one malformed event cannot fail the batch."""

    destination: str | None = None
    events: list[dict[str, Any]] = Field(default_factory=list)
