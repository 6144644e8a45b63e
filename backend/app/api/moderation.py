"""Room moderation API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_room_by_code
from app.database import get_db
from app.models import Room, User
from app.schemas import (
    BanRead,
    BanUserRequest,
    ChangeMicRequest,
    KickUserRequest,
    LockMicRequest,
    MicControlRead,
    ModerationEventRead,
    ModerationResult,
    ModeratorGrantUpdate,
    ModeratorRead,
    MuteMicRequest,
    MuteUserRequest,
    SeatTargetRequest,
    UnbanUserRequest,
)
from app.services import moderation

router = APIRouter(prefix="/rooms/{room_code}/moderation", tags=["moderation"])


def _seat_result(message: str, seat) -> ModerationResult:
    return ModerationResult(message=message, seat=MicControlRead.model_validate(seat))


@router.get("/events", response_model=list[ModerationEventRead])
def list_events(
    limit: int | None = Query(default=None, ge=1, le=200),
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Return the audit log, newest first."""

    return moderation.list_events(db, room, current_user.id, limit)


@router.get("/mic-control", response_model=list[MicControlRead])
def list_mic_control(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Return every materialized seat record ordered by seat number."""

    return moderation.list_mic_control(db, room, current_user.id)


@router.get("/bans", response_model=list[BanRead])
def list_bans(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return moderation.list_bans(db, room, current_user.id)


@router.post("/invite-to-mic", response_model=ModerationResult)
def invite_to_mic(
    payload: SeatTargetRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    seat = moderation.invite_to_mic(
        db, room, current_user.id, payload.target_user_id, payload.seat_number
    )
    return _seat_result("User invited to mic", seat)


@router.post("/remove-from-mic", response_model=ModerationResult)
def remove_from_mic(
    payload: SeatTargetRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    seat = moderation.remove_from_mic(
        db, room, current_user.id, payload.target_user_id, payload.seat_number
    )
    return _seat_result("User removed from mic", seat)


@router.post("/lock-mic", response_model=ModerationResult)
def lock_mic(
    payload: LockMicRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    seat = moderation.lock_mic(db, room, current_user.id, payload.seat_number, payload.lock)
    return _seat_result("Mic locked" if payload.lock else "Mic unlocked", seat)


@router.post("/mute-mic", response_model=ModerationResult)
def mute_mic(
    payload: MuteMicRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    seat = moderation.mute_mic(db, room, current_user.id, payload.seat_number, payload.mute)
    return _seat_result("Mic muted" if payload.mute else "Mic unmuted", seat)


@router.post("/change-mic", response_model=ModerationResult)
def change_mic(
    payload: ChangeMicRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    seat = moderation.change_mic(
        db, room, current_user.id, payload.target_user_id, payload.from_seat, payload.to_seat
    )
    return _seat_result("Mic changed", seat)


@router.post("/kick-user", response_model=ModerationResult)
def kick_user(
    payload: KickUserRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    moderation.kick_user(db, room, current_user.id, payload.target_user_id, payload.reason)
    return ModerationResult(message="User kicked from room")


@router.post("/ban-user", response_model=ModerationResult)
def ban_user(
    payload: BanUserRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    ban = moderation.ban_user(
        db, room, current_user.id, payload.target_user_id, payload.duration, payload.reason
    )
    return ModerationResult(message="User banned from room", ban=BanRead.model_validate(ban))


@router.post("/unban-user", response_model=ModerationResult)
def unban_user(
    payload: UnbanUserRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    moderation.unban_user(db, room, current_user.id, payload.target_user_id, payload.reason)
    return ModerationResult(message="Ban lifted")


@router.post("/mute-user", response_model=ModerationResult)
def mute_user(
    payload: MuteUserRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModerationResult:
    moderation.mute_user(
        db, room, current_user.id, payload.target_user_id, payload.mute, payload.reason
    )
    return ModerationResult(message="User muted" if payload.mute else "User unmuted")


@router.get("/moderators", response_model=list[ModeratorRead])
def list_moderators(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return moderation.list_moderators(db, room, current_user.id)


@router.put("/moderators/{user_id}", response_model=ModeratorRead)
def grant_moderator(
    user_id: int,
    payload: ModeratorGrantUpdate,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Replace the granular grants of *user_id* in this room."""

    return moderation.grant_moderator(db, room, current_user.id, user_id, payload.model_dump())


@router.delete(
    "/moderators/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
    response_class=Response,
)
def revoke_moderator(
    user_id: int,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    moderation.revoke_moderator(db, room, current_user.id, user_id)
