"""Find-or-create for remote chat partners and their conversations."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.core.errors import ProviderError
from inbox.database import run_with_retry_async
from inbox.models import (
    Channel,
    Conversation,
    ConversationStatus,
    FollowStatus,
    RemoteSourceType,
    RemoteUser,
)
from inbox.schemas.webhook import LineSource
from inbox.services.line_client import LineClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def placeholder_name(line_id: str, source_type: RemoteSourceType = RemoteSourceType.USER) -> str:
    label = {
        RemoteSourceType.USER: "User",
        RemoteSourceType.GROUP: "Group",
        RemoteSourceType.ROOM: "Room",
    }[RemoteSourceType(source_type)]
    return f"{label} {line_id[:8]}..."


def _needs_profile(remote_user: RemoteUser) -> bool:
    name = remote_user.display_name
    return not name or name == "Unknown" or name == placeholder_name(remote_user.line_user_id)


def find_remote_user(db: Session, channel_id: int, line_user_id: str) -> RemoteUser | None:
    stmt = select(RemoteUser).where(
        RemoteUser.channel_id == channel_id,
        RemoteUser.line_user_id == line_user_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def find_conversation(db: Session, channel_id: int, remote_user_id: int) -> Conversation | None:
    stmt = select(Conversation).where(
        Conversation.channel_id == channel_id,
        Conversation.remote_user_id == remote_user_id,
    )
    return db.execute(stmt).scalar_one_or_none()


async def _insert_or_refetch(db: Session, row: T, refetch: Callable[[], T | None]) -> tuple[T, bool]:
    """Insert ``row``; if a concurrent writer won the unique constraint, return theirs."""

    try:
        await run_with_retry_async(db, lambda session: session.add(row))
    except IntegrityError:
        existing = refetch()
        if existing is None:
            raise
        logger.info("Lost insert race for %s, using the existing row", type(row).__name__)
        return existing, False
    db.refresh(row)
    return row, True


async def _fetch_profile(client: LineClient, line_user_id: str) -> dict[str, Any] | None:
    try:
        return await client.get_profile(line_user_id)
    except ProviderError as exc:
        logger.warning(
            "Profile lookup for %s failed: %s",
            line_user_id,
            exc.detail,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return None


def _apply_profile(remote_user: RemoteUser, profile: dict[str, Any]) -> None:
    """Copy non-empty profile fields; a missing value never clears a stored one."""

    if profile.get("displayName"):
        remote_user.display_name = profile["displayName"]
    if profile.get("pictureUrl"):
        remote_user.picture_url = profile["pictureUrl"]
    if profile.get("statusMessage"):
        remote_user.status_message = profile["statusMessage"]
    if profile.get("language"):
        remote_user.language = profile["language"]


async def resolve_user(
    db: Session,
    channel: Channel,
    line_user_id: str,
    client: LineClient,
    *,
    mark_following: bool = True,
) -> RemoteUser:
    """Return the remote user for ``(channel, line_user_id)``, creating it when absent.

    The LINE profile is fetched best-effort. A failed lookup never blocks
    creation: the row gets a placeholder name and an ``unknown`` follow status.
    ``mark_following`` records that the user just wrote to the account.
    """

    existing = find_remote_user(db, channel.id, line_user_id)
    if existing is not None:
        profile: dict[str, Any] | None = None
        if _needs_profile(existing):
            profile = await _fetch_profile(client, line_user_id)
            if not (profile and profile.get("displayName")):
                profile = None
        follow = profile is not None or (
            mark_following and existing.follow_status != FollowStatus.FOLLOWING
        )
        if profile is not None or follow:

            def _update(session: Session) -> None:
                if profile is not None:
                    _apply_profile(existing, profile)
                if follow:
                    existing.follow_status = FollowStatus.FOLLOWING

            await run_with_retry_async(db, _update)
        return existing

    profile = await _fetch_profile(client, line_user_id)
    remote_user = RemoteUser(
        channel_id=channel.id,
        line_user_id=line_user_id,
        source_type=RemoteSourceType.USER,
        display_name=placeholder_name(line_user_id),
        language="th",
        follow_status=FollowStatus.FOLLOWING if profile is not None else FollowStatus.UNKNOWN,
    )
    if profile:
        _apply_profile(remote_user, profile)

    row, created = await _insert_or_refetch(
        db, remote_user, lambda: find_remote_user(db, channel.id, line_user_id)
    )
    if created:
        logger.info("Created remote user %s on channel %s", line_user_id, channel.id)
    return row


async def resolve_group(
    db: Session,
    channel: Channel,
    target_id: str,
    source_type: RemoteSourceType,
    client: LineClient,
) -> RemoteUser:
    """Group and room chats are stored as a remote user keyed by the group/room id."""

    existing = find_remote_user(db, channel.id, target_id)
    if existing is not None:
        if existing.source_type != source_type:
            summary = None
            if source_type == RemoteSourceType.GROUP:
                summary = await _fetch_group_summary(client, target_id)

            def _update(session: Session) -> None:
                existing.source_type = source_type
                if summary is not None:
                    _apply_group_summary(existing, *summary)

            await run_with_retry_async(db, _update)
        return existing

    entry = RemoteUser(
        channel_id=channel.id,
        line_user_id=target_id,
        source_type=source_type,
        display_name=placeholder_name(target_id, source_type),
        follow_status=FollowStatus.FOLLOWING,
        member_count=0,
    )
    if source_type == RemoteSourceType.GROUP:
        summary = await _fetch_group_summary(client, target_id)
        if summary is not None:
            _apply_group_summary(entry, *summary)

    row, _ = await _insert_or_refetch(db, entry, lambda: find_remote_user(db, channel.id, target_id))
    return row


async def _fetch_group_summary(
    client: LineClient, group_id: str
) -> tuple[dict[str, Any], int] | None:
    try:
        summary = await client.get_group_summary(group_id)
        member_count = await client.get_group_member_count(group_id)
    except ProviderError as exc:
        logger.warning("Group summary for %s unavailable: %s", group_id, exc.detail)
        return None
    return summary, member_count


def _apply_group_summary(entry: RemoteUser, summary: dict[str, Any], member_count: int) -> None:
    entry.member_count = member_count
    if summary.get("groupName"):
        entry.display_name = summary["groupName"]
    if summary.get("pictureUrl"):
        entry.picture_url = summary["pictureUrl"]


async def resolve_chat(
    db: Session, channel: Channel, source: LineSource, client: LineClient
) -> RemoteUser | None:
    """Remote user a webhook source belongs to, or ``None`` when it names nobody."""

    chat_id = source.chat_id
    if not chat_id:
        return None
    if source.type in (RemoteSourceType.GROUP.value, RemoteSourceType.ROOM.value):
        return await resolve_group(db, channel, chat_id, RemoteSourceType(source.type), client)
    return await resolve_user(db, channel, chat_id, client)


async def sender_info(client: LineClient, source: LineSource) -> dict[str, Any] | None:
    """Profile of the member who spoke in a group or room; only the id when unavailable."""

    if source.type not in ("group", "room") or not source.user_id:
        return None
    info: dict[str, Any] = {"user_id": source.user_id, "display_name": None, "picture_url": None}
    try:
        if source.type == "group":
            profile = await client.get_group_member_profile(source.group_id or "", source.user_id)
        else:
            profile = await client.get_room_member_profile(source.room_id or "", source.user_id)
    except ProviderError as exc:
        logger.warning("Sender profile for %s unavailable: %s", source.user_id, exc.detail)
        return info
    info["display_name"] = profile.get("displayName")
    info["picture_url"] = profile.get("pictureUrl")
    return info


async def resolve_conversation(
    db: Session,
    channel: Channel,
    remote_user: RemoteUser,
    *,
    initial_status: ConversationStatus = ConversationStatus.UNREAD,
    initial_unread: int = 1,
) -> tuple[Conversation, bool]:
    """Return the conversation for ``(channel, remote_user)`` and whether it was created.

    New conversations start unread with one unread message, unless the
    caller is logging an outgoing message.
    """

    existing = find_conversation(db, channel.id, remote_user.id)
    if existing is not None:
        return existing, False

    conversation = Conversation(
        channel_id=channel.id,
        remote_user_id=remote_user.id,
        status=initial_status,
        unread_count=initial_unread,
    )
    return await _insert_or_refetch(
        db, conversation, lambda: find_conversation(db, channel.id, remote_user.id)
    )
