"""Lookups and seat-state primitives shared by moderation and lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.errors import InvalidOperationError, NotFoundError
from app.models import (
    MicSeatStatus,
    Room,
    RoomBan,
    RoomMicControl,
    RoomUser,
    User,
)

# Seats a member may be placed on or moved to.
CLAIMABLE_STATUSES = (MicSeatStatus.AVAILABLE, MicSeatStatus.INVITED_ONLY)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_room(db: Session, room_code: str) -> Room:
    room = db.execute(select(Room).where(Room.room_code == room_code)).scalar_one_or_none()
    if room is None:
        raise NotFoundError("Room not found")
    return room


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_membership(db: Session, room_id: int, user_id: int) -> RoomUser | None:
    stmt = select(RoomUser).where(RoomUser.room_id == room_id, RoomUser.user_id == user_id)
    return db.execute(stmt).scalar_one_or_none()


def require_active_member(db: Session, room_id: int, user_id: int) -> RoomUser:
    membership = get_membership(db, room_id, user_id)
    if membership is None or not membership.is_active:
        raise NotFoundError("User not in room")
    return membership


def validate_seat_number(room: Room, seat_number: int) -> None:
    if not 1 <= seat_number <= room.max_seats:
        raise InvalidOperationError(f"Seat number must be between 1 and {room.max_seats}")


def count_active_members(db: Session, room_id: int) -> int:
    db.flush()
    stmt = select(func.count(RoomUser.id)).where(
        RoomUser.room_id == room_id, RoomUser.is_active.is_(True)
    )
    return int(db.execute(stmt).scalar_one())


def refresh_member_count(db: Session, room: Room) -> int:
    """Recompute the denormalized occupant count from active memberships."""

    room.current_users = count_active_members(db, room.id)
    room.last_activity = utcnow()
    return room.current_users


def get_seat(db: Session, room_id: int, seat_number: int) -> RoomMicControl | None:
    stmt = select(RoomMicControl).where(
        RoomMicControl.room_id == room_id, RoomMicControl.seat_number == seat_number
    )
    return db.execute(stmt).scalar_one_or_none()


def get_or_create_seat(db: Session, room_id: int, seat_number: int) -> RoomMicControl:
    """Return the seat record, materializing it as ``available`` on first use."""

    seat = get_seat(db, room_id, seat_number)
    if seat is None:
        seat = RoomMicControl(
            room_id=room_id,
            seat_number=seat_number,
            status=MicSeatStatus.AVAILABLE,
            invited_users=[],
        )
        db.add(seat)
        db.flush()
    return seat


def transition_seat(
    db: Session,
    seat: RoomMicControl,
    *,
    allowed: Iterable[MicSeatStatus],
    values: dict[str, Any],
    detail: str = "Mic seat is not available",
    criteria: Iterable[Any] = (),
) -> None:
    """Apply *values* only if the seat is still in one of the *allowed* states.

    The check and the write are one UPDATE statement, so of two requests
    racing for the same seat exactly one sees a matched row.
    """

    stmt = (
        update(RoomMicControl)
        .where(
            RoomMicControl.id == seat.id,
            RoomMicControl.status.in_(list(allowed)),
            *criteria,
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if db.execute(stmt).rowcount == 0:
        raise InvalidOperationError(detail)


def taken_seat_numbers(db: Session, room_id: int, *, exclude_user_id: int | None = None) -> set[int]:
    """Seat numbers nobody else may be placed on right now.

    A seat is taken when an active member sits on it, when it is locked, or
    when another user occupies its mic.
    """

    member_stmt = select(RoomUser.seat_number).where(
        RoomUser.room_id == room_id,
        RoomUser.is_active.is_(True),
        RoomUser.seat_number.is_not(None),
    )
    if exclude_user_id is not None:
        member_stmt = member_stmt.where(RoomUser.user_id != exclude_user_id)
    taken = {number for number in db.execute(member_stmt).scalars()}

    seats = db.execute(select(RoomMicControl).where(RoomMicControl.room_id == room_id)).scalars()
    for seat in seats:
        if seat.status == MicSeatStatus.LOCKED:
            taken.add(seat.seat_number)
        elif seat.status == MicSeatStatus.OCCUPIED and seat.occupied_by != exclude_user_id:
            taken.add(seat.seat_number)
    return taken


def release_user_seats(db: Session, room_id: int, user_id: int) -> None:
    """Drop a user from every mic seat they occupy or are invited to."""

    seats = db.execute(select(RoomMicControl).where(RoomMicControl.room_id == room_id)).scalars()
    for seat in seats:
        if seat.occupied_by == user_id:
            seat.occupied_by = None
            if seat.status == MicSeatStatus.OCCUPIED:
                seat.status = MicSeatStatus.AVAILABLE
        if user_id in (seat.invited_users or []):
            seat.invited_users = [invited for invited in seat.invited_users if invited != user_id]
            if seat.status == MicSeatStatus.INVITED_ONLY and not seat.invited_users:
                seat.status = MicSeatStatus.AVAILABLE


def is_ban_active(ban: RoomBan, now: datetime | None = None) -> bool:
    if not ban.is_active or ban.lifted_at is not None:
        return False
    expires_at = as_utc(ban.expires_at)
    return expires_at is None or expires_at > (now or utcnow())


def active_bans(db: Session, room_id: int, user_id: int) -> list[RoomBan]:
    stmt = select(RoomBan).where(
        RoomBan.room_id == room_id,
        RoomBan.user_id == user_id,
        RoomBan.is_active.is_(True),
    )
    now = utcnow()
    return [ban for ban in db.execute(stmt).scalars() if is_ban_active(ban, now)]
