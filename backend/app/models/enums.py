from __future__ import annotations

from enum import Enum


class RoomVisibility(str, Enum):
    """Whether a room is listed publicly."""

    PUBLIC = "public"
    PRIVATE = "private"


class RoomRole(str, Enum):
    """Roles that a user can have inside a room."""

    OWNER = "owner"
    MANAGER = "manager"
    MEMBER = "member"


class RoomUserStatus(str, Enum):
    """Presence state of a membership row."""

    ACTIVE = "active"
    KICKED = "kicked"
    BANNED = "banned"


class MicSeatStatus(str, Enum):
    """State of a single numbered mic seat."""

    AVAILABLE = "available"
    OCCUPIED = "occupied"
    LOCKED = "locked"
    INVITED_ONLY = "invited_only"


class BanDuration(str, Enum):
    """Duration categories a moderator can pick when banning."""

    ONE_DAY = "1_day"
    SEVEN_DAYS = "7_days"
    THIRTY_DAYS = "30_days"
    ONE_YEAR = "1_year"
    PERMANENT = "permanent"
