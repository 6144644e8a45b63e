"""Room lifecycle API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_room_by_code
from app.database import get_db
from app.models import Room, User
from app.schemas import (
    AutoJoinResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomResponse,
    RoomCreate,
    RoomDetail,
    RoomMemberRead,
    RoomRead,
    RoomUpdate,
    SwitchSeatRequest,
    UserSummary,
)
from app.services import lifecycle

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.post("", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: RoomCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    """Create a new room with the current user as the owner on seat 1."""

    return lifecycle.create_room(
        db,
        current_user,
        name=payload.name,
        description=payload.description,
        max_seats=payload.max_seats,
        visibility=payload.visibility,
    )


@router.get("", response_model=list[RoomRead])
def list_rooms(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> list[Room]:
    """List public rooms for the explore page."""

    return lifecycle.list_public_rooms(db, page=page, limit=limit)


@router.get("/{room_code}", response_model=RoomDetail)
def get_room(
    room_code: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomDetail:
    """Retrieve the room with its owner and active members."""

    room, members = lifecycle.load_room(db, room_code)
    detail = RoomDetail.model_validate(
        {
            **RoomRead.model_validate(room).model_dump(),
            "owner": UserSummary.model_validate(room.owner),
            "members": [RoomMemberRead.model_validate(member) for member in members],
        }
    )
    return detail


@router.patch("/{room_code}", response_model=RoomRead)
def update_room(
    payload: RoomUpdate,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    """Update room settings such as its name or lock flag."""

    changes = payload.model_dump(exclude_unset=True)
    # Only the description may be cleared.
    changes = {
        field: value for field, value in changes.items() if value is not None or field == "description"
    }
    return lifecycle.update_room(db, room, current_user, changes)


@router.delete(
    "/{room_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
    response_class=Response,
)
def delete_room(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    """Delete a room; only its owner or a portal admin may do this."""

    lifecycle.delete_room(db, room, current_user)


@router.post("/{room_code}/join", response_model=JoinRoomResponse)
def join_room(
    payload: JoinRoomRequest | None = None,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> JoinRoomResponse:
    seat_number = payload.seat_number if payload is not None else None
    membership = lifecycle.join_room(db, room, current_user, seat_number)
    return JoinRoomResponse(message="Joined room successfully", seat_number=membership.seat_number)


@router.post("/{room_code}/auto-join", response_model=AutoJoinResponse)
def auto_join(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutoJoinResponse:
    """Enter the room as an unseated listener unless already present."""

    result = lifecycle.auto_join(db, room, current_user)
    return AutoJoinResponse(
        message="Already in room" if result.already_joined else "Joined room successfully",
        already_joined=result.already_joined,
        seat_number=result.membership.seat_number,
    )


@router.post("/{room_code}/leave", response_model=LeaveRoomResponse)
def leave_room(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> LeaveRoomResponse:
    remaining = lifecycle.leave_room(db, room, current_user)
    return LeaveRoomResponse(message="Left room successfully", current_users=remaining)


@router.post("/{room_code}/switch-seat", response_model=RoomMemberRead)
def switch_seat(
    payload: SwitchSeatRequest,
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lifecycle.switch_seat(db, room, current_user, payload.seat_number)


@router.post("/{room_code}/toggle-mic", response_model=RoomMemberRead)
def toggle_mic(
    room: Room = Depends(get_room_by_code),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Turn the caller's own mic on or off."""

    return lifecycle.toggle_mic(db, room, current_user)
