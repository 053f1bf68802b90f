from __future__ import annotations

from enum import Enum


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ChannelStatus(str, Enum):
    """Lifecycle of a connected LINE channel; deletion is a status, not a row removal."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class FollowStatus(str, Enum):
    FOLLOWING = "following"
    UNFOLLOWED = "unfollowed"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class RemoteSourceType(str, Enum):
    """Kind of LINE chat partner a remote user row stands for."""

    USER = "user"
    GROUP = "group"
    ROOM = "room"


class ConversationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SPAM = "spam"


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LOCATION = "location"
    STICKER = "sticker"
    TEMPLATE = "template"
    FLEX = "flex"


class MessageSource(str, Enum):
    """Why an outgoing message exists."""

    MANUAL = "manual"
    AUTO_REPLY = "auto_reply"
    BOT_REPLY = "bot_reply"
    BROADCAST = "broadcast"


class MatchType(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    REGEX = "regex"


class BroadcastType(str, Enum):
    """``official`` uses the follower-wide broadcast quota, ``push`` multicasts to a list."""

    OFFICIAL = "official"
    PUSH = "push"


class BroadcastStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    COMPLETED = "completed"
    FAILED = "failed"


class BroadcastTarget(str, Enum):
    ALL = "all"
    TAGGED = "tagged"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DelegationStatus(str, Enum):
    """State of a delegation grant.

    ``expired`` is never stored: a pending grant past its expiry is reported
    as expired when evaluated.
    """

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class DelegationEvent(str, Enum):
    ACCEPT = "accept"
    EXPIRE = "expire"
    REVOKE = "revoke"


class Capability(str, Enum):
    """Independent permissions a delegate can hold; none implies another."""

    REPLY = "reply"
    VIEW_ALL = "view_all"
    BROADCAST = "broadcast"
    MANAGE_TAGS = "manage_tags"
    MANAGE_CHANNEL = "manage_channel"
