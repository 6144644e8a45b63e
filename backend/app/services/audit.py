"""Append-only moderation audit log."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import RoomModerationEvent


def record_event(
    db: Session,
    room_id: int,
    moderator_id: int,
    action: str,
    *,
    target_user_id: int | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    expires_at: datetime | None = None,
) -> RoomModerationEvent:
    """Stage an audit record inside the caller's transaction.

    The row is flushed immediately so a failing insert aborts the whole
    moderation write instead of being lost after the mutation commits.
    """

    event = RoomModerationEvent(
        room_id=room_id,
        moderator_id=moderator_id,
        target_user_id=target_user_id,
        action=action,
        reason=reason,
        details=metadata,
        expires_at=expires_at,
        is_active=True,
    )
    db.add(event)
    db.flush()
    return event


def list_events(db: Session, room_id: int, *, limit: int = 50) -> list[RoomModerationEvent]:
    """Return the newest events for a room with both parties loaded."""

    stmt = (
        select(RoomModerationEvent)
        .options(
            selectinload(RoomModerationEvent.moderator),
            selectinload(RoomModerationEvent.target_user),
        )
        .where(RoomModerationEvent.room_id == room_id)
        .order_by(RoomModerationEvent.created_at.desc(), RoomModerationEvent.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())
