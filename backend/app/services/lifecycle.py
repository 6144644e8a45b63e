"""Room creation, membership and seat selection for regular members."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.errors import ForbiddenError, InternalError, InvalidOperationError, NotFoundError
from app.database import write_transaction
from app.models import (
    MicSeatStatus,
    Room,
    RoomAnalytics,
    RoomMicControl,
    RoomRole,
    RoomUser,
    RoomUserStatus,
    RoomVisibility,
    User,
)
from app.monitoring.metrics import room_lifecycle_total
from app.services.room_events import publish_room_event
from app.services.seats import (
    active_bans,
    count_active_members,
    get_membership,
    get_or_create_seat,
    get_room,
    get_seat,
    refresh_member_count,
    release_user_seats,
    require_active_member,
    taken_seat_numbers,
    transition_seat,
    utcnow,
    validate_seat_number,
)

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass(slots=True)
class JoinResult:
    membership: RoomUser
    already_joined: bool = False


# ---------------------------------------------------------------------------
# Room codes
# ---------------------------------------------------------------------------


def _code_exists(db: Session, code: str) -> bool:
    return db.execute(select(Room.id).where(Room.room_code == code)).first() is not None


def generate_room_code(db: Session) -> str:
    """Allocate the next public room code.

    The prefix alternates with the parity of the number of existing rooms.
    Within a prefix the sequence continues from the highest number in use,
    never going below the configured floor.
    """

    prefixes = settings.room_code_prefixes
    total = db.execute(select(func.count(Room.id))).scalar_one()
    prefix = prefixes[total % len(prefixes)]

    numbers = []
    for code in db.execute(select(Room.room_code).where(Room.room_code.like(f"{prefix}%"))).scalars():
        suffix = code[len(prefix):]
        if suffix.isdigit() and int(suffix) >= settings.room_code_floor:
            numbers.append(int(suffix))
    candidate = max(numbers) + 1 if numbers else settings.room_code_floor

    for _ in range(settings.room_code_max_attempts):
        code = f"{prefix}{candidate}"
        if not _code_exists(db, code):
            return code
        candidate += 1

    fallback = f"{prefix}{str(int(time.time() * 1000))[-7:]}"
    logger.warning("Room code sequence exhausted for prefix %s; using %s", prefix, fallback)
    return fallback


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


def create_room(
    db: Session,
    owner: User,
    *,
    name: str,
    description: str | None = None,
    max_seats: int | None = None,
    visibility: RoomVisibility = RoomVisibility.PUBLIC,
) -> Room:
    """Create a room owned by *owner*, who takes seat 1.

    A concurrent request may commit the same code first; the unique
    constraint rejects the loser, which then allocates again.
    """

    seats = max_seats if max_seats is not None else settings.room_default_max_seats
    if not settings.room_min_seats <= seats <= settings.room_max_seats:
        raise InvalidOperationError("Invalid seat limit")

    owned = db.execute(select(func.count(Room.id)).where(Room.owner_id == owner.id)).scalar_one()
    if owned >= settings.room_max_per_owner:
        raise ForbiddenError("Maximum room limit reached")

    for attempt in range(1, settings.room_code_max_attempts + 1):
        code = generate_room_code(db)
        now = utcnow()
        room = Room(
            room_code=code,
            name=name,
            description=description,
            owner_id=owner.id,
            max_seats=seats,
            visibility=visibility,
            current_users=1,
            last_activity=now,
        )
        room.members.append(
            RoomUser(user_id=owner.id, role=RoomRole.OWNER, seat_number=1, joined_at=now)
        )
        room.analytics.append(RoomAnalytics(date=now))
        db.add(room)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Room code %s taken concurrently (attempt %s)", code, attempt)
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Database failure while creating room")
            raise InternalError("Failed to create room") from exc
        break
    else:
        raise InternalError("Failed to allocate a room code")

    db.refresh(room)
    room_lifecycle_total.labels("create").inc()
    logger.info("Room %s created by user %s", room.room_code, owner.id)
    return room


def load_room(db: Session, room_code: str) -> tuple[Room, list[RoomUser]]:
    """Return the room with its active members ordered by seat."""

    room = get_room(db, room_code)
    stmt = (
        select(RoomUser)
        .options(selectinload(RoomUser.user))
        .where(RoomUser.room_id == room.id, RoomUser.is_active.is_(True))
        .order_by(RoomUser.seat_number.is_(None), RoomUser.seat_number, RoomUser.joined_at)
    )
    return room, list(db.execute(stmt).scalars())


def list_public_rooms(db: Session, *, page: int = 1, limit: int = 20) -> list[Room]:
    """Public rooms, busiest first, then newest."""

    stmt = (
        select(Room)
        .where(Room.visibility == RoomVisibility.PUBLIC)
        .order_by(Room.current_users.desc(), Room.created_at.desc(), Room.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def update_room(db: Session, room: Room, actor: User, changes: dict[str, object]) -> Room:
    """Apply a partial update; only the owner or a portal admin may do this."""

    if room.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("Not authorized to update this room")
    with write_transaction(db, "update_room"):
        for field, value in changes.items():
            setattr(room, field, value)
        room.last_activity = utcnow()
    db.refresh(room)

    room_lifecycle_total.labels("update").inc()
    logger.info("Room %s updated by user %s: %s", room.room_code, actor.id, sorted(changes))
    publish_room_event(
        room.room_code,
        {
            "type": "room_updated",
            "room": room.room_code,
            "changes": {
                field: value.value if isinstance(value, RoomVisibility) else value
                for field, value in changes.items()
            },
        },
    )
    return room


def delete_room(db: Session, room: Room, actor: User) -> None:
    if room.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("Not authorized to delete this room")
    room_code = room.room_code
    with write_transaction(db, "delete_room"):
        db.delete(room)
    room_lifecycle_total.labels("delete").inc()
    logger.info("Room %s deleted by user %s", room_code, actor.id)
    publish_room_event(room_code, {"type": "room_deleted", "room": room_code})


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


def _prepare_rejoin(db: Session, room: Room, user_id: int) -> None:
    """Reject current members and actively banned users; clear stale rows."""

    existing = get_membership(db, room.id, user_id)
    if existing is not None and existing.is_active:
        raise InvalidOperationError("Already in room")
    if active_bans(db, room.id, user_id):
        raise ForbiddenError("You are banned from this room")
    if room.is_locked and room.owner_id != user_id:
        raise ForbiddenError("Room is locked")
    if existing is not None:
        db.delete(existing)
        db.flush()


def join_room(db: Session, room: Room, user: User, seat_number: int | None = None) -> RoomUser:
    """Join as a member on the requested seat, or on the first free one."""

    with write_transaction(db, "join_room"):
        _prepare_rejoin(db, room, user.id)
        if count_active_members(db, room.id) >= room.max_seats:
            raise InvalidOperationError("Room is full")

        taken = taken_seat_numbers(db, room.id)
        if seat_number is not None:
            validate_seat_number(room, seat_number)
            if seat_number in taken:
                raise InvalidOperationError("Seat is already taken")
        else:
            seat_number = next(
                (number for number in range(1, room.max_seats + 1) if number not in taken),
                None,
            )
            if seat_number is None:
                raise InvalidOperationError("Room is full")

        membership = RoomUser(
            room_id=room.id,
            user_id=user.id,
            role=RoomRole.OWNER if room.owner_id == user.id else RoomRole.MEMBER,
            seat_number=seat_number,
            status=RoomUserStatus.ACTIVE,
            is_active=True,
        )
        db.add(membership)
        refresh_member_count(db, room)
    db.refresh(membership)

    room_lifecycle_total.labels("join").inc()
    publish_room_event(
        room.room_code,
        {
            "type": "user_joined",
            "user_id": user.id,
            "display_name": user.public_name,
            "seat_number": membership.seat_number,
        },
        exclude_user_id=user.id,
    )
    return membership


def auto_join(db: Session, room: Room, user: User) -> JoinResult:
    """Enter the room without a seat; a no-op for current members."""

    existing = get_membership(db, room.id, user.id)
    if existing is not None and existing.is_active:
        return JoinResult(membership=existing, already_joined=True)

    with write_transaction(db, "auto_join", conflict_detail="Already in room"):
        _prepare_rejoin(db, room, user.id)
        membership = RoomUser(
            room_id=room.id,
            user_id=user.id,
            role=RoomRole.OWNER if room.owner_id == user.id else RoomRole.MEMBER,
            seat_number=None,
            status=RoomUserStatus.ACTIVE,
            is_active=True,
        )
        db.add(membership)
        refresh_member_count(db, room)
    db.refresh(membership)

    room_lifecycle_total.labels("auto_join").inc()
    publish_room_event(
        room.room_code,
        {
            "type": "user_joined",
            "user_id": user.id,
            "display_name": user.public_name,
            "seat_number": None,
        },
        exclude_user_id=user.id,
    )
    return JoinResult(membership=membership)


def leave_room(db: Session, room: Room, user: User) -> int:
    """Delete the caller's membership and return the new occupant count."""

    with write_transaction(db, "leave_room"):
        membership = get_membership(db, room.id, user.id)
        if membership is None:
            raise NotFoundError("User not in room")
        release_user_seats(db, room.id, user.id)
        db.delete(membership)
        remaining = refresh_member_count(db, room)

    room_lifecycle_total.labels("leave").inc()
    publish_room_event(room.room_code, {"type": "user_left", "user_id": user.id})
    return remaining


def switch_seat(db: Session, room: Room, user: User, seat_number: int | None) -> RoomUser:
    """Move the caller to *seat_number*, or off their seat when ``None``."""

    with write_transaction(db, "switch_seat"):
        membership = require_active_member(db, room.id, user.id)
        previous = membership.seat_number
        if seat_number is not None:
            validate_seat_number(room, seat_number)
            if seat_number in taken_seat_numbers(db, room.id, exclude_user_id=user.id):
                raise InvalidOperationError("Seat is already taken")
        if previous is not None and previous != seat_number:
            membership.is_mic_on = False
            release_user_seats(db, room.id, user.id)
        membership.seat_number = seat_number
    db.refresh(membership)

    room_lifecycle_total.labels("switch_seat").inc()
    publish_room_event(
        room.room_code,
        {
            "type": "seat_switched",
            "user_id": user.id,
            "from_seat": previous,
            "to_seat": seat_number,
        },
    )
    return membership


def toggle_mic(db: Session, room: Room, user: User) -> RoomUser:
    """Flip the caller's own mic.

    Turning the mic on occupies the caller's seat record; it is refused when
    the caller has no seat, when the seat is locked or held by someone else,
    and while a moderator keeps the seat or the caller muted.
    """

    with write_transaction(db, "toggle_mic"):
        membership = require_active_member(db, room.id, user.id)
        turning_on = not membership.is_mic_on
        if turning_on:
            if membership.seat_number is None:
                raise InvalidOperationError("Take a seat before turning the mic on")
            if membership.is_muted:
                raise InvalidOperationError("You have been muted by a moderator")
            seat = get_or_create_seat(db, room.id, membership.seat_number)
            if seat.is_muted:
                raise InvalidOperationError("Mic seat is muted")
            if seat.status == MicSeatStatus.INVITED_ONLY and user.id not in (seat.invited_users or []):
                raise InvalidOperationError("Mic seat is not available")
            transition_seat(
                db,
                seat,
                allowed=(MicSeatStatus.AVAILABLE, MicSeatStatus.INVITED_ONLY, MicSeatStatus.OCCUPIED),
                values={
                    "status": MicSeatStatus.OCCUPIED,
                    "occupied_by": user.id,
                    "invited_users": [invited for invited in (seat.invited_users or []) if invited != user.id],
                },
                criteria=(
                    (RoomMicControl.occupied_by.is_(None)) | (RoomMicControl.occupied_by == user.id),
                ),
            )
            membership.is_invited_to_mic = False
        elif membership.seat_number is not None:
            seat = get_seat(db, room.id, membership.seat_number)
            if seat is not None and seat.occupied_by == user.id:
                seat.occupied_by = None
                seat.status = MicSeatStatus.AVAILABLE
        membership.is_mic_on = turning_on
    db.refresh(membership)

    room_lifecycle_total.labels("toggle_mic").inc()
    publish_room_event(
        room.room_code,
        {
            "type": "mic_toggled",
            "user_id": user.id,
            "seat_number": membership.seat_number,
            "is_mic_on": membership.is_mic_on,
        },
    )
    return membership
