"""Pydantic schemas for API payloads."""

from .moderation import (
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
from .rooms import (
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
)
from .users import UserSummary

__all__ = [
    "AutoJoinResponse",
    "BanRead",
    "BanUserRequest",
    "ChangeMicRequest",
    "JoinRoomRequest",
    "JoinRoomResponse",
    "KickUserRequest",
    "LeaveRoomResponse",
    "LockMicRequest",
    "MicControlRead",
    "ModerationEventRead",
    "ModerationResult",
    "ModeratorGrantUpdate",
    "ModeratorRead",
    "MuteMicRequest",
    "MuteUserRequest",
    "RoomCreate",
    "RoomDetail",
    "RoomMemberRead",
    "RoomRead",
    "RoomUpdate",
    "SeatTargetRequest",
    "SwitchSeatRequest",
    "UnbanUserRequest",
    "UserSummary",
]
