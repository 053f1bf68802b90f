"""Keyword rules answered automatically."""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from inbox.core.errors import ValidationError
from inbox.models import AutoReplyRule, Channel, MatchType, MessageType
from inbox.schemas.payloads import (
    FlexPayload,
    ImagePayload,
    MessagePayload,
    StickerPayload,
    TextPayload,
)

logger = logging.getLogger(__name__)


def rule_matches(rule: AutoReplyRule, text: str) -> bool:
    """Case-insensitive predicate of a single rule; ``re.error`` escapes for bad regexes."""

    if rule.match_type == MatchType.REGEX:
        return re.compile(rule.keyword, re.IGNORECASE).search(text) is not None

    haystack = text.lower()
    keyword = rule.keyword.lower()
    if rule.match_type == MatchType.EXACT:
        return haystack == keyword
    if rule.match_type == MatchType.STARTS_WITH:
        return haystack.startswith(keyword)
    return keyword in haystack


def match_rules(rules: Iterable[AutoReplyRule], text: str) -> AutoReplyRule | None:
    """First matching rule by priority (high first), then id (low first)."""

    for rule in sorted(rules, key=lambda item: (-item.priority, item.id)):
        try:
            if rule_matches(rule, text):
                return rule
        except re.error as exc:
            logger.warning("Skipping auto-reply rule %s with invalid pattern: %s", rule.id, exc)
    return None


def load_rules(db: Session, channel: Channel) -> list[AutoReplyRule]:
    """Active rules for this channel plus the owner's rules that cover every channel."""

    stmt = (
        select(AutoReplyRule)
        .where(
            AutoReplyRule.is_active.is_(True),
            AutoReplyRule.owner_id == channel.owner_id,
            or_(AutoReplyRule.channel_id == channel.id, AutoReplyRule.channel_id.is_(None)),
        )
        .order_by(AutoReplyRule.priority.desc(), AutoReplyRule.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def match(db: Session, channel: Channel, text: str) -> AutoReplyRule | None:
    if not text:
        return None
    return match_rules(load_rules(db, channel), text)


def rule_payload(rule: AutoReplyRule) -> MessagePayload:
    """Outgoing payload of a rule's stored response.

    Stickers are stored as ``package_id:sticker_id``; flex responses as JSON,
    either a bubble/carousel or an object with ``altText`` and ``contents``.
    """

    content = rule.response_content
    if rule.response_type == MessageType.TEXT:
        return TextPayload(text=content)
    if rule.response_type == MessageType.IMAGE:
        return ImagePayload(url=content)
    if rule.response_type == MessageType.STICKER:
        package_id, _, sticker_id = content.partition(":")
        if not package_id or not sticker_id:
            raise ValidationError(f"Auto-reply rule {rule.id} has a malformed sticker reference")
        return StickerPayload(package_id=package_id.strip(), sticker_id=sticker_id.strip())
    if rule.response_type == MessageType.FLEX:
        try:
            document = json.loads(content)
        except ValueError as exc:
            raise ValidationError(f"Auto-reply rule {rule.id} has invalid flex JSON") from exc
        if isinstance(document, dict) and "contents" in document:
            return FlexPayload(
                alt_text=document.get("altText") or rule.keyword,
                contents=document["contents"],
            )
        return FlexPayload(alt_text=rule.keyword, contents=document)
    raise ValidationError(f"Unsupported auto-reply response type '{rule.response_type.value}'")
