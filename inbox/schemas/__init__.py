"""Pydantic schemas for API payloads."""

from .inbox import (
    AutoReplyCreate,
    AutoReplyRead,
    BotLogRequest,
    BroadcastCreate,
    BroadcastRead,
    BroadcastRecipientRead,
    BroadcastRunResult,
    BroadcastSendRequest,
    ChannelCreate,
    ChannelDetail,
    ChannelRead,
    ChannelUpdate,
    ConversationStatusUpdate,
    ConversationSummary,
    ConversationTagsUpdate,
    GrantRead,
    InviteCreate,
    MessageRead,
    RemoteUserRead,
    SendMessageRequest,
    TagCreate,
    TagRead,
    TagUpdate,
)
from .payloads import (
    AudioPayload,
    BasePayload,
    FilePayload,
    FlexPayload,
    ImagePayload,
    LocationPayload,
    MessagePayload,
    StickerPayload,
    TemplatePayload,
    TextPayload,
    VideoPayload,
    build_preview,
    parse_payload,
)
from .webhook import LineEvent, LineMessage, LineSource, WebhookDelivery

__all__ = [
    "AutoReplyCreate",
    "AutoReplyRead",
    "BotLogRequest",
    "BroadcastCreate",
    "BroadcastRead",
    "BroadcastRecipientRead",
    "BroadcastRunResult",
    "BroadcastSendRequest",
    "ChannelCreate",
    "ChannelDetail",
    "ChannelRead",
    "ChannelUpdate",
    "ConversationStatusUpdate",
    "ConversationSummary",
    "ConversationTagsUpdate",
    "GrantRead",
    "InviteCreate",
    "MessageRead",
    "RemoteUserRead",
    "SendMessageRequest",
    "TagCreate",
    "TagRead",
    "TagUpdate",
    "AudioPayload",
    "BasePayload",
    "FilePayload",
    "FlexPayload",
    "ImagePayload",
    "LocationPayload",
    "MessagePayload",
    "StickerPayload",
    "TemplatePayload",
    "TextPayload",
    "VideoPayload",
    "build_preview",
    "parse_payload",
    "LineEvent",
    "LineMessage",
    "LineSource",
    "WebhookDelivery",
]
