"""Schemas for room lifecycle endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, conint, constr

from app.config import get_settings
from app.models import RoomRole, RoomUserStatus, RoomVisibility
from app.schemas.users import UserSummary

settings = get_settings()


class RoomCreate(BaseModel):
    """Payload for creating a new room."""

    name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Human readable room name"
    )
    description: constr(strip_whitespace=True, max_length=1000) | None = Field(
        default=None, description="Optional room description"
    )
    max_seats: int = Field(
        default=settings.room_default_max_seats,
        ge=settings.room_min_seats,
        le=settings.room_max_seats,
        description="Number of mic seats in the room",
    )
    visibility: RoomVisibility = Field(default=RoomVisibility.PUBLIC)


class RoomUpdate(BaseModel):
    """Partial update of room settings; omitted fields are left unchanged."""

    name: constr(strip_whitespace=True, min_length=1, max_length=128) | None = None
    description: constr(strip_whitespace=True, max_length=1000) | None = None
    visibility: RoomVisibility | None = None
    is_locked: bool | None = None


class RoomRead(BaseModel):
    """Room representation returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    room_code: str
    name: str
    description: str | None = None
    owner_id: int
    max_seats: int
    visibility: RoomVisibility
    is_locked: bool
    current_users: int
    created_at: datetime
    updated_at: datetime


class RoomMemberRead(BaseModel):
    """Membership row of a user inside a room."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    role: RoomRole
    seat_number: int | None = None
    is_mic_on: bool
    is_muted: bool
    is_invited_to_mic: bool
    status: RoomUserStatus
    joined_at: datetime
    user: UserSummary | None = None


class RoomDetail(RoomRead):
    """Room with its owner and active members ordered by seat."""

    owner: UserSummary
    members: list[RoomMemberRead] = Field(default_factory=list)


class JoinRoomRequest(BaseModel):
    seat_number: conint(ge=1) | None = Field(
        default=None, description="Requested seat; the first free seat is used when omitted"
    )


class SwitchSeatRequest(BaseModel):
    seat_number: conint(ge=1) | None = Field(
        ..., description="Destination seat, or null to leave the current seat"
    )


class JoinRoomResponse(BaseModel):
    message: str
    seat_number: int | None = None


class AutoJoinResponse(BaseModel):
    message: str
    already_joined: bool
    seat_number: int | None = None


class LeaveRoomResponse(BaseModel):
    message: str
    current_users: int
