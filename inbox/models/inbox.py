from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inbox.models.base import Base
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
    UserStatus,
)

_CAPABILITY_BIT_VALUES: dict[Capability, int] = {
    capability: 1 << index for index, capability in enumerate(Capability)
}


def encode_capabilities(capabilities: Iterable[Capability | str]) -> int:
    """Convert a collection of capabilities into a bitmask."""

    mask = 0
    for capability in capabilities:
        mask |= _CAPABILITY_BIT_VALUES[Capability(capability)]
    return mask


def decode_capabilities(mask: int) -> list[Capability]:
    """Expand a bitmask back into a list of capabilities."""

    values: list[Capability] = []
    for capability, bit in _CAPABILITY_BIT_VALUES.items():
        if mask & bit:
            values.append(capability)
    return values


def _enum(enum_cls: type, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


conversation_tags = Table(
    "conversation_tags",
    Base.metadata,
    Column("conversation_id", ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """Operator account (tenant owner or delegate)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus, "user_status"), default=UserStatus.ACTIVE, nullable=False
    )
    bot_api_token: Mapped[str | None] = mapped_column(String(128), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    channels: Mapped[list["Channel"]] = relationship(back_populates="owner")


class Channel(Base):
    """A tenant's LINE Official Account connection."""

    __tablename__ = "channels"
    __table_args__ = (
        UniqueConstraint("owner_id", "line_channel_id", name="uq_channel_owner_line_id"),
        Index("ix_channels_line_channel_status", "line_channel_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    line_channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_secret: Mapped[str] = mapped_column(String(128), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    basic_id: Mapped[str | None] = mapped_column(String(64))
    picture_url: Mapped[str | None] = mapped_column(String(1024))
    status: Mapped[ChannelStatus] = mapped_column(
        _enum(ChannelStatus, "channel_status"), default=ChannelStatus.ACTIVE, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    owner: Mapped[User] = relationship(back_populates="channels")
    remote_users: Mapped[list["RemoteUser"]] = relationship(
        back_populates="channel", cascade="all, delete-orphan"
    )
    conversations: Mapped[list["Conversation"]] = relationship(
        back_populates="channel", cascade="all, delete-orphan"
    )
    tags: Mapped[list["Tag"]] = relationship(back_populates="channel", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == ChannelStatus.ACTIVE


class RemoteUser(Base):
    """A LINE chat partner (user, group or room) as seen by one channel."""

    __tablename__ = "remote_users"
    __table_args__ = (
        UniqueConstraint("channel_id", "line_user_id", name="uq_remote_user_channel_line_id"),
        Index("ix_remote_users_channel_follow", "channel_id", "follow_status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    line_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_type: Mapped[RemoteSourceType] = mapped_column(
        _enum(RemoteSourceType, "remote_source_type"),
        default=RemoteSourceType.USER,
        nullable=False,
    )
    display_name: Mapped[str | None] = mapped_column(String(255))
    picture_url: Mapped[str | None] = mapped_column(String(1024))
    status_message: Mapped[str | None] = mapped_column(String(512))
    language: Mapped[str | None] = mapped_column(String(16))
    follow_status: Mapped[FollowStatus] = mapped_column(
        _enum(FollowStatus, "follow_status"), default=FollowStatus.UNKNOWN, nullable=False
    )
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    channel: Mapped[Channel] = relationship(back_populates="remote_users")
    conversations: Mapped[list["Conversation"]] = relationship(back_populates="remote_user")


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("channel_id", "name", name="uq_tag_channel_name"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    color: Mapped[str] = mapped_column(String(16), default="#06C755", nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    channel: Mapped[Channel] = relationship(back_populates="tags")


class Conversation(Base):
    """The single thread between a channel and a remote user."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("channel_id", "remote_user_id", name="uq_conversation_channel_remote_user"),
        Index("ix_conversations_channel_last_message", "channel_id", "last_message_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    remote_user_id: Mapped[int] = mapped_column(
        ForeignKey("remote_users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[ConversationStatus] = mapped_column(
        _enum(ConversationStatus, "conversation_status"),
        default=ConversationStatus.UNREAD,
        nullable=False,
    )
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_preview: Mapped[str | None] = mapped_column(String(255))
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    channel: Mapped[Channel] = relationship(back_populates="conversations")
    remote_user: Mapped[RemoteUser] = relationship(back_populates="conversations")
    tags: Mapped[list[Tag]] = relationship(secondary=conversation_tags)
    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )


class Message(Base):
    """Append-only message log entry.

    Exactly one payload shape is populated per ``message_type``; rows are built
    from a typed payload (see ``inbox.schemas.payloads``) rather than by
    filling columns ad hoc.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("channel_id", "line_message_id", name="uq_message_channel_line_id"),
        Index("ix_messages_conversation_created_at", "conversation_id", "created_at"),
        Index("ix_messages_bot_message_id", "bot_message_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    remote_user_id: Mapped[int] = mapped_column(
        ForeignKey("remote_users.id", ondelete="CASCADE"), nullable=False
    )
    line_message_id: Mapped[str | None] = mapped_column(String(64))
    bot_message_id: Mapped[str | None] = mapped_column(String(128))
    direction: Mapped[MessageDirection] = mapped_column(
        _enum(MessageDirection, "message_direction"), nullable=False
    )
    message_type: Mapped[MessageType] = mapped_column(
        _enum(MessageType, "message_type"), nullable=False
    )
    source_type: Mapped[MessageSource | None] = mapped_column(_enum(MessageSource, "message_source"))
    content: Mapped[str | None] = mapped_column(Text)
    media_url: Mapped[str | None] = mapped_column(String(1024))
    sticker_id: Mapped[str | None] = mapped_column(String(32))
    package_id: Mapped[str | None] = mapped_column(String(32))
    flex_content: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    sender_info: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    reply_token: Mapped[str | None] = mapped_column(String(255))
    sent_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    conversation: Mapped[Conversation] = relationship(back_populates="messages")
    remote_user: Mapped[RemoteUser] = relationship()


class AutoReplyRule(Base):
    """Keyword rule answered automatically; ``channel_id`` NULL covers all owner channels."""

    __tablename__ = "auto_reply_rules"
    __table_args__ = (Index("ix_auto_reply_rules_owner_active", "owner_id", "is_active"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channel_id: Mapped[int | None] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"))
    keyword: Mapped[str] = mapped_column(String(255), nullable=False)
    match_type: Mapped[MatchType] = mapped_column(
        _enum(MatchType, "match_type"), default=MatchType.CONTAINS, nullable=False
    )
    response_type: Mapped[MessageType] = mapped_column(
        _enum(MessageType, "auto_reply_response_type"), default=MessageType.TEXT, nullable=False
    )
    response_content: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Broadcast(Base):
    """One send campaign; counters move while the run is in flight."""

    __tablename__ = "broadcasts"
    __table_args__ = (Index("ix_broadcasts_channel_created_at", "channel_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    broadcast_type: Mapped[BroadcastType] = mapped_column(
        _enum(BroadcastType, "broadcast_type"), default=BroadcastType.PUSH, nullable=False
    )
    target_type: Mapped[BroadcastTarget] = mapped_column(
        _enum(BroadcastTarget, "broadcast_target"), default=BroadcastTarget.ALL, nullable=False
    )
    target_tag_ids: Mapped[list[int] | None] = mapped_column(JSON)
    message_type: Mapped[MessageType] = mapped_column(
        _enum(MessageType, "broadcast_message_type"), default=MessageType.TEXT, nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    payloads: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    recipient_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delay_ms: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    target_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[BroadcastStatus] = mapped_column(
        _enum(BroadcastStatus, "broadcast_status"), default=BroadcastStatus.DRAFT, nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    channel: Mapped[Channel] = relationship()
    recipients: Mapped[list["BroadcastRecipient"]] = relationship(
        back_populates="broadcast", cascade="all, delete-orphan"
    )


class BroadcastRecipient(Base):
    __tablename__ = "broadcast_recipients"
    __table_args__ = (
        UniqueConstraint("broadcast_id", "line_user_id", name="uq_broadcast_recipient"),
        Index("ix_broadcast_recipients_status", "broadcast_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    broadcast_id: Mapped[int] = mapped_column(
        ForeignKey("broadcasts.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    remote_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("remote_users.id", ondelete="SET NULL")
    )
    line_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[RecipientStatus] = mapped_column(
        _enum(RecipientStatus, "recipient_status"), default=RecipientStatus.PENDING, nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    broadcast: Mapped[Broadcast] = relationship(back_populates="recipients")


class AdminPermission(Base):
    """Delegation grant from a channel owner to another account.

    A pending grant carries an invite token and expiry and has no delegate
    yet. ``channel_id`` NULL scopes the grant to every channel of the owner.
    """

    __tablename__ = "admin_permissions"
    __table_args__ = (
        UniqueConstraint("invite_token", name="uq_admin_permission_invite_token"),
        Index("ix_admin_permissions_admin_status", "admin_id", "status"),
        Index("ix_admin_permissions_owner_admin", "owner_id", "admin_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    channel_id: Mapped[int | None] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"))
    invite_email: Mapped[str | None] = mapped_column(String(255))
    permissions_mask: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[DelegationStatus] = mapped_column(
        _enum(DelegationStatus, "delegation_status"),
        default=DelegationStatus.PENDING,
        nullable=False,
    )
    invite_token: Mapped[str | None] = mapped_column(String(128))
    invite_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    owner: Mapped[User] = relationship(foreign_keys=[owner_id])
    admin: Mapped[User | None] = relationship(foreign_keys=[admin_id])
    channel: Mapped[Channel | None] = relationship()

    @property
    def capabilities(self) -> list[Capability]:
        return decode_capabilities(self.permissions_mask)
