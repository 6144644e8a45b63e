"""Moderation actions applied to room membership and mic seats.

Every action follows the same sequence: authorize the caller, validate the
seat and membership invariants, apply the writes together with the audit
record in one transaction, then announce the outcome to the room.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.errors import InvalidOperationError, NotFoundError
from app.database import write_transaction
from app.models import (
    BanDuration,
    MicSeatStatus,
    Room,
    RoomBan,
    RoomMicControl,
    RoomModerationEvent,
    RoomModeratorPermissions,
    RoomUser,
    RoomUserStatus,
)
from app.monitoring.metrics import moderation_actions_total
from app.services import audit
from app.services.permissions import GRANT_FIELDS, ModerationAction, require_authority
from app.services.room_events import disconnect_user, notify_user, publish_moderation_event
from app.services.seats import (
    CLAIMABLE_STATUSES,
    active_bans,
    get_membership,
    get_or_create_seat,
    get_seat,
    get_user,
    refresh_member_count,
    release_user_seats,
    require_active_member,
    transition_seat,
    utcnow,
    validate_seat_number,
)

logger = logging.getLogger(__name__)

settings = get_settings()

BAN_DURATIONS: dict[BanDuration, timedelta | None] = {
    BanDuration.ONE_DAY: timedelta(hours=24),
    BanDuration.SEVEN_DAYS: timedelta(hours=7 * 24),
    BanDuration.THIRTY_DAYS: timedelta(hours=30 * 24),
    BanDuration.ONE_YEAR: timedelta(hours=365 * 24),
    BanDuration.PERMANENT: None,
}


def compute_ban_expiry(duration: BanDuration, banned_at: datetime) -> datetime | None:
    """Expiry for a ban issued at *banned_at*; ``None`` means permanent."""

    offset = BAN_DURATIONS[duration]
    return None if offset is None else banned_at + offset


def _ensure_not_owner(room: Room, target_user_id: int, verb: str) -> None:
    if room.owner_id == target_user_id:
        raise InvalidOperationError(f"Cannot {verb} room owner")


def _announce(room: Room, action: str, event: dict[str, Any]) -> None:
    moderation_actions_total.labels(action).inc()
    logger.info(
        "Moderation action %s in room %s by user %s",
        action,
        room.room_code,
        event.get("moderator_id"),
    )
    publish_moderation_event(room.room_code, event)


# ---------------------------------------------------------------------------
# Mic seats
# ---------------------------------------------------------------------------


def invite_to_mic(
    db: Session, room: Room, actor_id: int, target_user_id: int, seat_number: int
) -> RoomMicControl:
    with write_transaction(db, "invite_to_mic"):
        validate_seat_number(room, seat_number)
        require_authority(actor_id, room.id, ModerationAction.INVITE_TO_MIC, db)
        target = require_active_member(db, room.id, target_user_id)
        seat = get_or_create_seat(db, room.id, seat_number)
        invited = list(seat.invited_users or [])
        if target_user_id not in invited:
            invited.append(target_user_id)
        transition_seat(
            db,
            seat,
            allowed=CLAIMABLE_STATUSES,
            values={"status": MicSeatStatus.INVITED_ONLY, "invited_users": invited},
        )
        target.is_invited_to_mic = True
        audit.record_event(
            db,
            room.id,
            actor_id,
            ModerationAction.INVITE_TO_MIC.value,
            target_user_id=target_user_id,
            metadata={"seat_number": seat_number},
        )
    db.refresh(seat)

    event = {
        "type": "mic_invitation",
        "target_user_id": target_user_id,
        "moderator_id": actor_id,
        "seat_number": seat_number,
    }
    _announce(room, ModerationAction.INVITE_TO_MIC.value, event)
    notify_user(target_user_id, {**event, "room": room.room_code})
    return seat


def remove_from_mic(
    db: Session, room: Room, actor_id: int, target_user_id: int, seat_number: int
) -> RoomMicControl:
    with write_transaction(db, "remove_from_mic"):
        validate_seat_number(room, seat_number)
        require_authority(actor_id, room.id, ModerationAction.REMOVE_FROM_MIC, db)
        target = get_membership(db, room.id, target_user_id)
        if target is None:
            raise NotFoundError("User not in room")
        target.is_mic_on = False
        target.is_invited_to_mic = False
        seat = get_or_create_seat(db, room.id, seat_number)
        if seat.occupied_by not in (None, target_user_id):
            displaced = get_membership(db, room.id, seat.occupied_by)
            if displaced is not None:
                displaced.is_mic_on = False
        seat.status = MicSeatStatus.AVAILABLE
        seat.occupied_by = None
        seat.invited_users = [user for user in (seat.invited_users or []) if user != target_user_id]
        audit.record_event(
            db,
            room.id,
            actor_id,
            ModerationAction.REMOVE_FROM_MIC.value,
            target_user_id=target_user_id,
            metadata={"seat_number": seat_number},
        )
    db.refresh(seat)

    _announce(
        room,
        ModerationAction.REMOVE_FROM_MIC.value,
        {
            "type": "mic_removal",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
            "seat_number": seat_number,
        },
    )
    return seat


def lock_mic(db: Session, room: Room, actor_id: int, seat_number: int, lock: bool) -> RoomMicControl:
    """Lock or unlock a seat.

    Locking a locked seat succeeds and records the new lock holder. Locking
    a seat takes whoever sits on it off the seat and off the mic.
    """
    action = "lock_mic" if lock else "unlock_mic"
    with write_transaction(db, action):
        validate_seat_number(room, seat_number)
        require_authority(actor_id, room.id, ModerationAction.LOCK_MIC, db)
        seat = get_or_create_seat(db, room.id, seat_number)
        if lock:
            seated = db.execute(
                select(RoomUser).where(
                    RoomUser.room_id == room.id,
                    (RoomUser.seat_number == seat_number)
                    | (RoomUser.user_id == seat.occupied_by),
                )
            ).scalars()
            for occupant in seated:
                occupant.is_mic_on = False
                if occupant.seat_number == seat_number:
                    occupant.seat_number = None
            seat.status = MicSeatStatus.LOCKED
            seat.locked_by = actor_id
            seat.occupied_by = None
        else:
            if seat.status == MicSeatStatus.LOCKED:
                seat.status = MicSeatStatus.AVAILABLE
            seat.locked_by = None
        audit.record_event(
            db, room.id, actor_id, action, metadata={"seat_number": seat_number}
        )
    db.refresh(seat)

    _announce(
        room,
        action,
        {
            "type": "mic_locked" if lock else "mic_unlocked",
            "moderator_id": actor_id,
            "seat_number": seat_number,
        },
    )
    return seat


def mute_mic(db: Session, room: Room, actor_id: int, seat_number: int, mute: bool) -> RoomMicControl:
    """Mute or unmute a seat; empty seats can be muted too."""
    action = "mute_mic" if mute else "unmute_mic"
    with write_transaction(db, action):
        validate_seat_number(room, seat_number)
        require_authority(actor_id, room.id, ModerationAction.MUTE_MIC, db)
        seat = get_or_create_seat(db, room.id, seat_number)
        seat.is_muted = mute
        seat.muted_by = actor_id if mute else None
        audit.record_event(
            db, room.id, actor_id, action, metadata={"seat_number": seat_number}
        )
    db.refresh(seat)

    _announce(
        room,
        action,
        {
            "type": "mic_muted" if mute else "mic_unmuted",
            "moderator_id": actor_id,
            "seat_number": seat_number,
        },
    )
    return seat


def change_mic(
    db: Session,
    room: Room,
    actor_id: int,
    target_user_id: int,
    from_seat: int,
    to_seat: int,
) -> RoomMicControl:
    """Move a member from one seat to another."""

    with write_transaction(db, "change_mic"):
        validate_seat_number(room, from_seat)
        validate_seat_number(room, to_seat)
        if from_seat == to_seat:
            raise InvalidOperationError("Source and destination seats must differ")
        require_authority(actor_id, room.id, ModerationAction.CHANGE_MIC, db)
        target = require_active_member(db, room.id, target_user_id)
        if target.seat_number != from_seat:
            raise InvalidOperationError("User is not on the source seat")

        holder = db.execute(
            select(RoomUser.user_id).where(
                RoomUser.room_id == room.id,
                RoomUser.is_active.is_(True),
                RoomUser.seat_number == to_seat,
                RoomUser.user_id != target_user_id,
            )
        ).first()
        if holder is not None:
            raise InvalidOperationError("Target mic seat is already occupied")

        destination = get_or_create_seat(db, room.id, to_seat)
        if destination.status == MicSeatStatus.OCCUPIED and destination.occupied_by != target_user_id:
            raise InvalidOperationError("Target mic seat is already occupied")

        source = get_seat(db, room.id, from_seat)
        if source is not None and source.occupied_by == target_user_id:
            source.status = MicSeatStatus.AVAILABLE
            source.occupied_by = None
            db.flush()

        transition_seat(
            db,
            destination,
            allowed=(*CLAIMABLE_STATUSES, MicSeatStatus.OCCUPIED),
            values={"status": MicSeatStatus.OCCUPIED, "occupied_by": target_user_id},
            detail="Target mic seat is already occupied",
            criteria=(
                (RoomMicControl.occupied_by.is_(None))
                | (RoomMicControl.occupied_by == target_user_id),
            ),
        )
        target.seat_number = to_seat
        audit.record_event(
            db,
            room.id,
            actor_id,
            ModerationAction.CHANGE_MIC.value,
            target_user_id=target_user_id,
            metadata={"from_seat": from_seat, "to_seat": to_seat},
        )
    db.refresh(destination)

    _announce(
        room,
        ModerationAction.CHANGE_MIC.value,
        {
            "type": "mic_changed",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
            "from_seat": from_seat,
            "to_seat": to_seat,
        },
    )
    return destination


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


def mute_user(
    db: Session,
    room: Room,
    actor_id: int,
    target_user_id: int,
    mute: bool,
    reason: str | None = None,
) -> None:
    action = "mute_user" if mute else "unmute_user"
    with write_transaction(db, action):
        _ensure_not_owner(room, target_user_id, "mute")
        require_authority(actor_id, room.id, ModerationAction.MUTE_USER, db)
        target = require_active_member(db, room.id, target_user_id)
        target.is_muted = mute
        if mute:
            target.is_mic_on = False
        audit.record_event(
            db, room.id, actor_id, action, target_user_id=target_user_id, reason=reason
        )

    _announce(
        room,
        action,
        {
            "type": "user_muted" if mute else "user_unmuted",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
            "reason": reason,
        },
    )


def kick_user(
    db: Session, room: Room, actor_id: int, target_user_id: int, reason: str | None = None
) -> None:
    """Remove a member from the room; they may join again later."""

    with write_transaction(db, "kick_user"):
        _ensure_not_owner(room, target_user_id, "kick")
        require_authority(actor_id, room.id, ModerationAction.KICK_USER, db)
        target = require_active_member(db, room.id, target_user_id)
        target.status = RoomUserStatus.KICKED
        target.is_active = False
        target.is_mic_on = False
        target.is_invited_to_mic = False
        target.seat_number = None
        release_user_seats(db, room.id, target_user_id)
        refresh_member_count(db, room)
        audit.record_event(
            db,
            room.id,
            actor_id,
            ModerationAction.KICK_USER.value,
            target_user_id=target_user_id,
            reason=reason,
        )

    _announce(
        room,
        ModerationAction.KICK_USER.value,
        {
            "type": "user_kicked",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
            "reason": reason,
        },
    )
    disconnect_user(room.room_code, target_user_id, reason)


def ban_user(
    db: Session,
    room: Room,
    actor_id: int,
    target_user_id: int,
    duration: BanDuration,
    reason: str | None = None,
) -> RoomBan:
    """Ban a user for *duration*. Users who are not present can be banned too."""

    with write_transaction(db, "ban_user"):
        _ensure_not_owner(room, target_user_id, "ban")
        require_authority(actor_id, room.id, ModerationAction.BAN_USER, db)
        get_user(db, target_user_id)

        now = utcnow()
        expires_at = compute_ban_expiry(duration, now)

        target = get_membership(db, room.id, target_user_id)
        if target is not None:
            target.status = RoomUserStatus.BANNED
            target.is_active = False
            target.is_mic_on = False
            target.is_invited_to_mic = False
            target.seat_number = None
        release_user_seats(db, room.id, target_user_id)
        refresh_member_count(db, room)

        ban = RoomBan(
            room_id=room.id,
            user_id=target_user_id,
            banned_by=actor_id,
            duration=duration,
            reason=reason,
            expires_at=expires_at,
            is_active=True,
            created_at=now,
        )
        db.add(ban)
        audit.record_event(
            db,
            room.id,
            actor_id,
            ModerationAction.BAN_USER.value,
            target_user_id=target_user_id,
            reason=reason,
            metadata={"duration": duration.value},
            expires_at=expires_at,
        )
    db.refresh(ban)

    _announce(
        room,
        ModerationAction.BAN_USER.value,
        {
            "type": "user_banned",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
            "duration": duration.value,
            "reason": reason,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )
    disconnect_user(room.room_code, target_user_id, reason)
    return ban


def unban_user(
    db: Session, room: Room, actor_id: int, target_user_id: int, reason: str | None = None
) -> list[RoomBan]:
    """Lift every ban currently in force against the user."""

    with write_transaction(db, "unban_user"):
        require_authority(actor_id, room.id, ModerationAction.BAN_USER, db)
        bans = active_bans(db, room.id, target_user_id)
        if not bans:
            raise NotFoundError("User is not banned")
        now = utcnow()
        for ban in bans:
            ban.is_active = False
            ban.lifted_at = now
            ban.lifted_by = actor_id
        audit.record_event(
            db, room.id, actor_id, "unban_user", target_user_id=target_user_id, reason=reason
        )

    _announce(
        room,
        "unban_user",
        {
            "type": "user_unbanned",
            "target_user_id": target_user_id,
            "moderator_id": actor_id,
        },
    )
    return bans


# ---------------------------------------------------------------------------
# Read paths
# ---------------------------------------------------------------------------


def list_events(db: Session, room: Room, actor_id: int, limit: int | None = None) -> list[RoomModerationEvent]:
    require_authority(actor_id, room.id, ModerationAction.VIEW_EVENTS, db)
    return audit.list_events(db, room.id, limit=limit or settings.moderation_events_limit)


def list_mic_control(db: Session, room: Room, actor_id: int) -> list[RoomMicControl]:
    require_authority(actor_id, room.id, ModerationAction.VIEW_MIC_CONTROL, db)
    stmt = (
        select(RoomMicControl)
        .where(RoomMicControl.room_id == room.id)
        .order_by(RoomMicControl.seat_number)
    )
    return list(db.execute(stmt).scalars())


def list_bans(db: Session, room: Room, actor_id: int) -> list[RoomBan]:
    require_authority(actor_id, room.id, ModerationAction.VIEW_BANS, db)
    stmt = (
        select(RoomBan)
        .options(selectinload(RoomBan.user), selectinload(RoomBan.banned_by_user))
        .where(RoomBan.room_id == room.id)
        .order_by(RoomBan.created_at.desc(), RoomBan.id.desc())
    )
    return list(db.execute(stmt).scalars())


# ---------------------------------------------------------------------------
# Moderator grants
# ---------------------------------------------------------------------------


def list_moderators(db: Session, room: Room, actor_id: int) -> list[RoomModeratorPermissions]:
    require_authority(actor_id, room.id, ModerationAction.MANAGE_MODERATORS, db)
    stmt = (
        select(RoomModeratorPermissions)
        .options(selectinload(RoomModeratorPermissions.user))
        .where(
            RoomModeratorPermissions.room_id == room.id,
            RoomModeratorPermissions.is_active.is_(True),
        )
        .order_by(RoomModeratorPermissions.user_id)
    )
    return list(db.execute(stmt).scalars())


def grant_moderator(
    db: Session, room: Room, actor_id: int, target_user_id: int, grants: dict[str, bool]
) -> RoomModeratorPermissions:
    """Create or replace the granular grants of a user."""

    unknown = set(grants) - set(GRANT_FIELDS.values())
    if unknown:
        raise InvalidOperationError(f"Unknown permissions: {', '.join(sorted(unknown))}")

    with write_transaction(db, "grant_moderator", conflict_detail="Moderator grant changed concurrently"):
        require_authority(actor_id, room.id, ModerationAction.MANAGE_MODERATORS, db)
        get_user(db, target_user_id)
        if room.owner_id == target_user_id:
            raise InvalidOperationError("Room owner already has full authority")
        record = db.execute(
            select(RoomModeratorPermissions).where(
                RoomModeratorPermissions.room_id == room.id,
                RoomModeratorPermissions.user_id == target_user_id,
            )
        ).scalar_one_or_none()
        if record is None:
            record = RoomModeratorPermissions(room_id=room.id, user_id=target_user_id)
            db.add(record)
        for field in GRANT_FIELDS.values():
            setattr(record, field, bool(grants.get(field, False)))
        record.is_active = True
        record.granted_by = actor_id
        audit.record_event(
            db,
            room.id,
            actor_id,
            "grant_moderator",
            target_user_id=target_user_id,
            metadata={field: value for field, value in grants.items() if value},
        )
    db.refresh(record)

    _announce(
        room,
        "grant_moderator",
        {"type": "moderator_updated", "target_user_id": target_user_id, "moderator_id": actor_id},
    )
    return record


def revoke_moderator(db: Session, room: Room, actor_id: int, target_user_id: int) -> None:
    with write_transaction(db, "revoke_moderator"):
        require_authority(actor_id, room.id, ModerationAction.MANAGE_MODERATORS, db)
        record = db.execute(
            select(RoomModeratorPermissions).where(
                RoomModeratorPermissions.room_id == room.id,
                RoomModeratorPermissions.user_id == target_user_id,
                RoomModeratorPermissions.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if record is None:
            raise NotFoundError("Moderator not found")
        record.is_active = False
        audit.record_event(db, room.id, actor_id, "revoke_moderator", target_user_id=target_user_id)

    _announce(
        room,
        "revoke_moderator",
        {"type": "moderator_revoked", "target_user_id": target_user_id, "moderator_id": actor_id},
    )


__all__ = [
    "BAN_DURATIONS",
    "ban_user",
    "change_mic",
    "compute_ban_expiry",
    "grant_moderator",
    "invite_to_mic",
    "kick_user",
    "list_bans",
    "list_events",
    "list_mic_control",
    "list_moderators",
    "lock_mic",
    "mute_mic",
    "mute_user",
    "remove_from_mic",
    "revoke_moderator",
    "unban_user",
]
