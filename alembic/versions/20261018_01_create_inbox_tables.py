"""create inbox tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


USER_STATUS = sa.Enum("pending", "active", "suspended", name="user_status")
CHANNEL_STATUS = sa.Enum("active", "inactive", "deleted", name="channel_status")
REMOTE_SOURCE_TYPE = sa.Enum("user", "group", "room", name="remote_source_type")
FOLLOW_STATUS = sa.Enum("following", "unfollowed", "blocked", "unknown", name="follow_status")
CONVERSATION_STATUS = sa.Enum(
    "unread", "read", "processing", "completed", "spam", name="conversation_status"
)
MESSAGE_DIRECTION = sa.Enum("incoming", "outgoing", name="message_direction")
_MESSAGE_TYPES = ("text", "image", "video", "audio", "file", "location", "sticker", "template", "flex")
MESSAGE_TYPE = sa.Enum(*_MESSAGE_TYPES, name="message_type")
AUTO_REPLY_RESPONSE_TYPE = sa.Enum(*_MESSAGE_TYPES, name="auto_reply_response_type")
BROADCAST_MESSAGE_TYPE = sa.Enum(*_MESSAGE_TYPES, name="broadcast_message_type")
MESSAGE_SOURCE = sa.Enum("manual", "auto_reply", "bot_reply", "broadcast", name="message_source")
MATCH_TYPE = sa.Enum("exact", "contains", "starts_with", "regex", name="match_type")
BROADCAST_TYPE = sa.Enum("official", "push", name="broadcast_type")
BROADCAST_TARGET = sa.Enum("all", "tagged", name="broadcast_target")
BROADCAST_STATUS = sa.Enum(
    "draft", "scheduled", "sending", "completed", "failed", name="broadcast_status"
)
RECIPIENT_STATUS = sa.Enum("pending", "sent", "failed", name="recipient_status")
DELEGATION_STATUS = sa.Enum("pending", "active", "expired", "revoked", name="delegation_status")

ENUMS = (
    USER_STATUS,
    CHANNEL_STATUS,
    REMOTE_SOURCE_TYPE,
    FOLLOW_STATUS,
    CONVERSATION_STATUS,
    MESSAGE_DIRECTION,
    MESSAGE_TYPE,
    AUTO_REPLY_RESPONSE_TYPE,
    BROADCAST_MESSAGE_TYPE,
    MESSAGE_SOURCE,
    MATCH_TYPE,
    BROADCAST_TYPE,
    BROADCAST_TARGET,
    BROADCAST_STATUS,
    RECIPIENT_STATUS,
    DELEGATION_STATUS,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("status", USER_STATUS, nullable=False, server_default="active"),
        sa.Column("bot_api_token", sa.String(length=128), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("bot_api_token", name="uq_users_bot_api_token"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "channels",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("line_channel_id", sa.String(length=64), nullable=False),
        sa.Column("channel_secret", sa.String(length=128), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("basic_id", sa.String(length=64), nullable=True),
        sa.Column("picture_url", sa.String(length=1024), nullable=True),
        sa.Column("status", CHANNEL_STATUS, nullable=False, server_default="active"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("owner_id", "line_channel_id", name="uq_channel_owner_line_id"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_channels_line_channel_status", "channels", ["line_channel_id", "status"])

    op.create_table(
        "remote_users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("source_type", REMOTE_SOURCE_TYPE, nullable=False, server_default="user"),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("picture_url", sa.String(length=1024), nullable=True),
        sa.Column("status_message", sa.String(length=512), nullable=True),
        sa.Column("language", sa.String(length=16), nullable=True),
        sa.Column("follow_status", FOLLOW_STATUS, nullable=False, server_default="unknown"),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("channel_id", "line_user_id", name="uq_remote_user_channel_line_id"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_remote_users_channel_follow", "remote_users", ["channel_id", "follow_status"]
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=False, server_default="#06C755"),
        sa.Column("description", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("channel_id", "name", name="uq_tag_channel_name"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("remote_user_id", sa.Integer(), nullable=False),
        sa.Column("status", CONVERSATION_STATUS, nullable=False, server_default="unread"),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_preview", sa.String(length=255), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["remote_user_id"], ["remote_users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "channel_id", "remote_user_id", name="uq_conversation_channel_remote_user"
        ),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_conversations_channel_last_message",
        "conversations",
        ["channel_id", "last_message_at"],
    )

    op.create_table(
        "conversation_tags",
        sa.Column("conversation_id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tag_id", sa.Integer(), primary_key=True, nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("remote_user_id", sa.Integer(), nullable=False),
        sa.Column("line_message_id", sa.String(length=64), nullable=True),
        sa.Column("bot_message_id", sa.String(length=128), nullable=True),
        sa.Column("direction", MESSAGE_DIRECTION, nullable=False),
        sa.Column("message_type", MESSAGE_TYPE, nullable=False),
        sa.Column("source_type", MESSAGE_SOURCE, nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("media_url", sa.String(length=1024), nullable=True),
        sa.Column("sticker_id", sa.String(length=32), nullable=True),
        sa.Column("package_id", sa.String(length=32), nullable=True),
        sa.Column("flex_content", sa.JSON(), nullable=True),
        sa.Column("sender_info", sa.JSON(), nullable=True),
        sa.Column("reply_token", sa.String(length=255), nullable=True),
        sa.Column("sent_by_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["remote_user_id"], ["remote_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sent_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("channel_id", "line_message_id", name="uq_message_channel_line_id"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_messages_conversation_created_at", "messages", ["conversation_id", "created_at"]
    )
    op.create_index("ix_messages_bot_message_id", "messages", ["bot_message_id"])

    op.create_table(
        "auto_reply_rules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=True),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("match_type", MATCH_TYPE, nullable=False, server_default="contains"),
        sa.Column(
            "response_type", AUTO_REPLY_RESPONSE_TYPE, nullable=False, server_default="text"
        ),
        sa.Column("response_content", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_auto_reply_rules_owner_active", "auto_reply_rules", ["owner_id", "is_active"]
    )

    op.create_table(
        "broadcasts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("broadcast_type", BROADCAST_TYPE, nullable=False, server_default="push"),
        sa.Column("target_type", BROADCAST_TARGET, nullable=False, server_default="all"),
        sa.Column("target_tag_ids", sa.JSON(), nullable=True),
        sa.Column("message_type", BROADCAST_MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("payloads", sa.JSON(), nullable=False),
        sa.Column("recipient_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delay_ms", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("target_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", BROADCAST_STATUS, nullable=False, server_default="draft"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_broadcasts_channel_created_at", "broadcasts", ["channel_id", "created_at"]
    )

    op.create_table(
        "broadcast_recipients",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("broadcast_id", sa.Integer(), nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=False),
        sa.Column("remote_user_id", sa.Integer(), nullable=True),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("status", RECIPIENT_STATUS, nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["broadcast_id"], ["broadcasts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["remote_user_id"], ["remote_users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("broadcast_id", "line_user_id", name="uq_broadcast_recipient"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_broadcast_recipients_status", "broadcast_recipients", ["broadcast_id", "status"]
    )

    op.create_table(
        "admin_permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("admin_id", sa.Integer(), nullable=True),
        sa.Column("channel_id", sa.Integer(), nullable=True),
        sa.Column("invite_email", sa.String(length=255), nullable=True),
        sa.Column("permissions_mask", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", DELEGATION_STATUS, nullable=False, server_default="pending"),
        sa.Column("invite_token", sa.String(length=128), nullable=True),
        sa.Column("invite_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "invited_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["admin_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("invite_token", name="uq_admin_permission_invite_token"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_admin_permissions_admin_status", "admin_permissions", ["admin_id", "status"]
    )
    op.create_index(
        "ix_admin_permissions_owner_admin", "admin_permissions", ["owner_id", "admin_id"]
    )


def downgrade() -> None:
    op.drop_table("admin_permissions")
    op.drop_table("broadcast_recipients")
    op.drop_table("broadcasts")
    op.drop_table("auto_reply_rules")
    op.drop_table("messages")
    op.drop_table("conversation_tags")
    op.drop_table("conversations")
    op.drop_table("tags")
    op.drop_table("remote_users")
    op.drop_table("channels")
    op.drop_table("users")

    for enum in reversed(ENUMS):
        enum.drop(op.get_bind(), checkfirst=True)
