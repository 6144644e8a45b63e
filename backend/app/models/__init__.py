"""Database models package."""

from .base import Base
from .enums import BanDuration, MicSeatStatus, RoomRole, RoomUserStatus, RoomVisibility
from .rooms import (
    Room,
    RoomAnalytics,
    RoomBan,
    RoomMicControl,
    RoomModerationEvent,
    RoomModeratorPermissions,
    RoomUser,
    User,
)

__all__ = [
    "Base",
    "User",
    "Room",
    "RoomUser",
    "RoomMicControl",
    "RoomBan",
    "RoomModerationEvent",
    "RoomModeratorPermissions",
    "RoomAnalytics",
    "BanDuration",
    "MicSeatStatus",
    "RoomRole",
    "RoomUserStatus",
    "RoomVisibility",
]
