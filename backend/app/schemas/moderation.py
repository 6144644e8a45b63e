"""Schemas for room moderation endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, conint, constr

from app.config import get_settings
from app.models import BanDuration, MicSeatStatus
from app.schemas.users import UserSummary

settings = get_settings()

Reason = constr(strip_whitespace=True, max_length=settings.moderation_reason_max_length)
UserId = conint(ge=1)
SeatNumber = conint(ge=1)


class SeatTargetRequest(BaseModel):
    """Body shared by invite-to-mic and remove-from-mic."""

    target_user_id: UserId
    seat_number: SeatNumber


class LockMicRequest(BaseModel):
    seat_number: SeatNumber
    lock: bool = Field(..., description="True locks the seat, false unlocks it")


class MuteMicRequest(BaseModel):
    seat_number: SeatNumber
    mute: bool = Field(..., description="True mutes the seat, false unmutes it")


class KickUserRequest(BaseModel):
    target_user_id: UserId
    reason: Reason | None = None


class BanUserRequest(BaseModel):
    target_user_id: UserId
    duration: BanDuration
    reason: Reason | None = None


class UnbanUserRequest(BaseModel):
    target_user_id: UserId
    reason: Reason | None = None


class MuteUserRequest(BaseModel):
    target_user_id: UserId
    mute: bool = True
    reason: Reason | None = None


class ChangeMicRequest(BaseModel):
    target_user_id: UserId
    from_seat: SeatNumber
    to_seat: SeatNumber


class ModeratorGrantUpdate(BaseModel):
    """Full set of granular grants; omitted flags are revoked."""

    can_invite_to_mic: bool = False
    can_remove_from_mic: bool = False
    can_lock_mic: bool = False
    can_mute_mic: bool = False
    can_kick_users: bool = False
    can_ban_users: bool = False
    can_mute_users: bool = False
    can_manage_moderators: bool = False


class ModeratorRead(ModeratorGrantUpdate):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    is_active: bool
    granted_by: int | None = None
    user: UserSummary | None = None


class MicControlRead(BaseModel):
    """Persisted state of one mic seat."""

    model_config = ConfigDict(from_attributes=True)

    seat_number: int
    status: MicSeatStatus
    occupied_by: int | None = None
    locked_by: int | None = None
    is_muted: bool
    muted_by: int | None = None
    invited_users: list[int] = Field(default_factory=list)


class BanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    banned_by: int | None = None
    duration: BanDuration
    reason: str | None = None
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime
    lifted_at: datetime | None = None
    lifted_by: int | None = None
    user: UserSummary | None = None


class ModerationEventRead(BaseModel):
    """Audit log entry with both parties resolved."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    moderator_id: int | None = None
    target_user_id: int | None = None
    reason: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="details")
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime
    moderator: UserSummary | None = None
    target_user: UserSummary | None = None


class ModerationResult(BaseModel):
    """Acknowledgement returned by moderation write endpoints."""

    message: str
    seat: MicControlRead | None = None
    ban: BanRead | None = None
