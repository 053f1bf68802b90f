"""Database models package."""

from .base import Base
from .enums import (
    BroadcastStatus,
    BroadcastTarget,
    BroadcastType,
    Capability,
    ChannelStatus,
    ConversationStatus,
    DelegationEvent,
    DelegationStatus,
    FollowStatus,
    MatchType,
    MessageDirection,
    MessageSource,
    MessageType,
    RecipientStatus,
    RemoteSourceType,
    UserStatus,
)
from .inbox import (
    AdminPermission,
    AutoReplyRule,
    Broadcast,
    BroadcastRecipient,
    Channel,
    Conversation,
    Message,
    RemoteUser,
    Tag,
    User,
    conversation_tags,
    decode_capabilities,
    encode_capabilities,
)

__all__ = [
    "Base",
    "User",
    "Channel",
    "RemoteUser",
    "Tag",
    "Conversation",
    "Message",
    "AutoReplyRule",
    "Broadcast",
    "BroadcastRecipient",
    "AdminPermission",
    "conversation_tags",
    "encode_capabilities",
    "decode_capabilities",
    "BroadcastStatus",
    "BroadcastTarget",
    "BroadcastType",
    "Capability",
    "ChannelStatus",
    "ConversationStatus",
    "DelegationEvent",
    "DelegationStatus",
    "FollowStatus",
    "MatchType",
    "MessageDirection",
    "MessageSource",
    "MessageType",
    "RecipientStatus",
    "RemoteSourceType",
    "UserStatus",
]
