"""Schemas for the dashboard and bot API surfaces."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inbox.models.enums import (
    BroadcastStatus,
    BroadcastTarget,
    BroadcastType,
    Capability,
    ChannelStatus,
    ConversationStatus,
    DelegationStatus,
    FollowStatus,
    MatchType,
    MessageDirection,
    MessageSource,
    MessageType,
    RecipientStatus,
    RemoteSourceType,
)


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MessageRead(_ReadModel):
    """Serialized representation of a stored message."""

    id: int
    conversation_id: int
    channel_id: int
    direction: MessageDirection
    message_type: MessageType
    source_type: MessageSource | None = None
    content: str | None = None
    media_url: str | None = None
    sticker_id: str | None = None
    package_id: str | None = None
    flex_content: dict[str, Any] | None = None
    sender_info: dict[str, Any] | None = None
    line_message_id: str | None = None
    is_read: bool = False
    created_at: datetime


class RemoteUserRead(_ReadModel):
    id: int
    line_user_id: str
    source_type: RemoteSourceType
    display_name: str | None = None
    picture_url: str | None = None
    follow_status: FollowStatus


class TagRead(_ReadModel):
    id: int
    channel_id: int
    name: str
    color: str
    description: str | None = None


class ConversationSummary(_ReadModel):
    """Fields a conversation list needs without joining messages."""

    id: int
    channel_id: int
    status: ConversationStatus
    unread_count: int
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    remote_user: RemoteUserRead | None = None
    tags: list[TagRead] = Field(default_factory=list)


class ConversationStatusUpdate(BaseModel):
    status: ConversationStatus


class ConversationTagsUpdate(BaseModel):
    tag_ids: list[int] = Field(default_factory=list, max_length=50)


OutgoingType = Literal["text", "image", "video", "audio", "sticker", "flex"]


class SendMessageRequest(BaseModel):
    """Dashboard reply to a conversation."""

    conversation_id: int
    message_type: OutgoingType = "text"
    content: str | None = None
    media_url: str | None = None
    preview_url: str | None = None
    duration: int | None = Field(default=None, gt=0)
    sticker_id: str | None = None
    package_id: str | None = None
    flex_content: dict[str, Any] | None = None
    alt_text: str | None = None


class BotLogRequest(BaseModel):
    """Message already sent by an external bot, logged into the inbox."""

    channel_id: int | None = None
    line_channel_id: str | None = None
    line_user_id: str | None = None
    message_type: MessageType = MessageType.TEXT
    content: str | None = None
    flex_content: dict[str, Any] | None = None
    sticker_id: str | None = None
    package_id: str | None = None
    media_url: str | None = None
    alt_text: str | None = None
    original_timestamp: int | None = Field(
        default=None, description="Epoch milliseconds of the message the bot answered"
    )
    bot_message_id: str | None = Field(default=None, max_length=128)


BroadcastMessageType = Literal["text", "image", "flex"]


class BroadcastSendRequest(BaseModel):
    channel_id: int
    broadcast_type: BroadcastType = BroadcastType.PUSH
    messages: list[dict[str, Any]] | None = Field(default=None, description="Typed payloads, at most five")
    message_type: BroadcastMessageType | None = None
    content: str | dict[str, Any] | None = None
    alt_text: str | None = None
    limit: int = Field(default=0, ge=0, description="0 sends to every eligible recipient")
    delay_ms: int | None = Field(default=None, ge=0, le=60000)


class BroadcastCreate(BroadcastSendRequest):
    target_type: BroadcastTarget = BroadcastTarget.ALL
    target_tag_ids: list[int] = Field(default_factory=list)
    scheduled_at: datetime | None = None


class BroadcastRunResult(BaseModel):
    id: int
    status: BroadcastStatus
    target_count: int
    sent_count: int
    failed_count: int
    message_count: int


class BroadcastRead(_ReadModel):
    id: int
    channel_id: int
    broadcast_type: BroadcastType
    target_type: BroadcastTarget
    target_tag_ids: list[int] | None = None
    message_type: MessageType
    content: str
    recipient_limit: int
    delay_ms: int
    target_count: int
    sent_count: int
    failed_count: int
    status: BroadcastStatus
    error_message: str | None = None
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class BroadcastRecipientRead(_ReadModel):
    id: int
    line_user_id: str
    display_name: str | None = None
    status: RecipientStatus
    error_message: str | None = None
    sent_at: datetime | None = None


class InviteCreate(BaseModel):
    email: str | None = Field(default=None, max_length=255)
    channel_id: int | None = Field(default=None, description="Omit to grant every channel of the owner")
    capabilities: list[Capability] = Field(default_factory=lambda: [Capability.REPLY])

    @field_validator("capabilities")
    @classmethod
    def require_capability(cls, value: list[Capability]) -> list[Capability]:
        if not value:
            raise ValueError("At least one capability is required")
        return list(dict.fromkeys(value))


class GrantRead(BaseModel):
    id: int
    owner_id: int
    admin_id: int | None = None
    channel_id: int | None = None
    invite_email: str | None = None
    capabilities: list[Capability]
    status: DelegationStatus
    invite_token: str | None = None
    invite_expires_at: datetime | None = None
    accepted_at: datetime | None = None


class ChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    line_channel_id: str = Field(..., min_length=1, max_length=64)
    channel_secret: str = Field(..., min_length=1, max_length=128)
    access_token: str = Field(..., min_length=1)


class ChannelRead(_ReadModel):
    id: int
    owner_id: int
    name: str
    line_channel_id: str
    basic_id: str | None = None
    picture_url: str | None = None
    status: ChannelStatus
    created_at: datetime


class ChannelDetail(ChannelRead):
    """A channel as seen by someone allowed to manage it."""

    is_owner: bool
    capabilities: list[Capability]


class ChannelUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    channel_secret: str | None = Field(default=None, min_length=1, max_length=128)
    access_token: str | None = Field(default=None, min_length=1)
    status: Literal["active", "inactive"] | None = Field(
        default=None, description="Deleting a channel goes through DELETE instead"
    )


HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class TagCreate(BaseModel):
    channel_id: int
    name: str = Field(..., min_length=1, max_length=64)
    color: str = Field(default="#06C755", pattern=HEX_COLOR)
    description: str | None = Field(default=None, max_length=255)


class TagUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=64)
    color: str | None = Field(default=None, pattern=HEX_COLOR)
    description: str | None = Field(default=None, max_length=255)


AutoReplyResponseType = Literal["text", "image", "sticker", "flex"]


class AutoReplyCreate(BaseModel):
    channel_id: int | None = None
    keyword: str = Field(..., min_length=1, max_length=255)
    match_type: MatchType = MatchType.CONTAINS
    response_type: AutoReplyResponseType = "text"
    response_content: str = Field(..., min_length=1)
    is_active: bool = True
    priority: int = 0


class AutoReplyRead(_ReadModel):
    id: int
    channel_id: int | None = None
    keyword: str
    match_type: MatchType
    response_type: MessageType
    response_content: str
    is_active: bool
    priority: int
