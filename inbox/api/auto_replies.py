"""Auto-reply rule management."""

from __future__ import annotations

import re

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from inbox.api.deps import get_current_user, load_channel
from inbox.core.errors import NotFoundError, ValidationError
from inbox.database import get_db
from inbox.models import AutoReplyRule, MatchType, MessageType, User
from inbox.schemas import AutoReplyCreate, AutoReplyRead
from inbox.services.auto_reply import rule_payload

router = APIRouter(prefix="/auto-replies", tags=["auto-replies"])


@router.get("", response_model=list[AutoReplyRead])
def list_rules(
    channel_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutoReplyRule]:
    stmt = select(AutoReplyRule).where(AutoReplyRule.owner_id == current_user.id)
    if channel_id is not None:
        stmt = stmt.where(AutoReplyRule.channel_id == channel_id)
    stmt = stmt.order_by(AutoReplyRule.priority.desc(), AutoReplyRule.id.asc())
    return list(db.execute(stmt).scalars().all())


@router.post("", response_model=AutoReplyRead, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: AutoReplyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutoReplyRule:
    if payload.channel_id is not None:
        channel = load_channel(db, payload.channel_id)
        if channel.owner_id != current_user.id:
            raise NotFoundError("Channel not found")
    if payload.match_type == MatchType.REGEX:
        try:
            re.compile(payload.keyword)
        except re.error as exc:
            raise ValidationError(f"Invalid regular expression: {exc}") from exc

    rule = AutoReplyRule(
        owner_id=current_user.id,
        channel_id=payload.channel_id,
        keyword=payload.keyword,
        match_type=payload.match_type,
        response_type=MessageType(payload.response_type),
        response_content=payload.response_content,
        is_active=payload.is_active,
        priority=payload.priority,
    )
    # fails fast on malformed sticker references or flex JSON
    rule_payload(rule)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rule = db.get(AutoReplyRule, rule_id)
    if rule is None or rule.owner_id != current_user.id:
        raise NotFoundError("Auto-reply rule not found")
    db.delete(rule)
    db.commit()
