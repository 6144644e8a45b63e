"""Moderation authority resolution for rooms."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError, NotFoundError
from app.models import Room, RoomModeratorPermissions, RoomRole, RoomUser, RoomUserStatus


class ModerationAction(str, Enum):
    """Closed set of actions a moderation request can ask authority for."""

    INVITE_TO_MIC = "invite_to_mic"
    REMOVE_FROM_MIC = "remove_from_mic"
    LOCK_MIC = "lock_mic"
    MUTE_MIC = "mute_mic"
    KICK_USER = "kick_user"
    BAN_USER = "ban_user"
    MUTE_USER = "mute_user"
    MANAGE_MODERATORS = "manage_moderators"
    CHANGE_MIC = "change_mic"
    VIEW_EVENTS = "view_events"
    VIEW_MIC_CONTROL = "view_mic_control"
    VIEW_BANS = "view_bans"

    @property
    def grant_field(self) -> str | None:
        """Name of the granular grant column gating this action, if any."""

        return GRANT_FIELDS.get(self)

    @property
    def description(self) -> str:
        return ACTION_DESCRIPTIONS[self]

    def allowed_by(self, grants: RoomModeratorPermissions | None) -> bool:
        """Check a grant row; actions without a grant column are never allowed."""

        field = self.grant_field
        if grants is None or field is None or not grants.is_active:
            return False
        return bool(getattr(grants, field))


GRANT_FIELDS: dict[ModerationAction, str] = {
    ModerationAction.INVITE_TO_MIC: "can_invite_to_mic",
    ModerationAction.REMOVE_FROM_MIC: "can_remove_from_mic",
    ModerationAction.LOCK_MIC: "can_lock_mic",
    ModerationAction.MUTE_MIC: "can_mute_mic",
    ModerationAction.KICK_USER: "can_kick_users",
    ModerationAction.BAN_USER: "can_ban_users",
    ModerationAction.MUTE_USER: "can_mute_users",
    ModerationAction.MANAGE_MODERATORS: "can_manage_moderators",
}

ACTION_DESCRIPTIONS: dict[ModerationAction, str] = {
    ModerationAction.INVITE_TO_MIC: "invite users to mic",
    ModerationAction.REMOVE_FROM_MIC: "remove users from mic",
    ModerationAction.LOCK_MIC: "lock mic",
    ModerationAction.MUTE_MIC: "mute mic",
    ModerationAction.KICK_USER: "kick users",
    ModerationAction.BAN_USER: "ban users",
    ModerationAction.MUTE_USER: "mute users",
    ModerationAction.MANAGE_MODERATORS: "manage moderators",
    ModerationAction.CHANGE_MIC: "change mic",
    ModerationAction.VIEW_EVENTS: "view moderation events",
    ModerationAction.VIEW_MIC_CONTROL: "view mic control",
    ModerationAction.VIEW_BANS: "view bans",
}


@dataclass(slots=True)
class Authority:
    """Outcome of an authority lookup for one user, room and action."""

    has_permission: bool
    is_owner: bool
    is_manager: bool
    granted_permissions: dict[str, bool] | None = None


def _grants_snapshot(grants: RoomModeratorPermissions | None) -> dict[str, bool] | None:
    if grants is None or not grants.is_active:
        return None
    return {field: bool(getattr(grants, field)) for field in GRANT_FIELDS.values()}


def resolve_authority(
    user_id: int, room_id: int, action: ModerationAction, db: Session
) -> Authority:
    """
    Determine whether a user may perform a moderation action in a room.

    Precedence:
    - The room owner is authorized for everything and cannot be restricted.
    - An active member with the ``manager`` role is authorized for every action.
    - Anyone else needs an active grant row with the action's flag set.

    Nothing is cached; room, membership and grants are read on every call.

    Args:
        user_id: The acting user ID
        room_id: The room ID
        action: The requested moderation action
        db: Database session

    Returns:
        The resolved :class:`Authority`

    Raises:
        NotFoundError: If the room does not exist
    """
    room = db.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found")

    if room.owner_id == user_id:
        return Authority(has_permission=True, is_owner=True, is_manager=False)

    membership = db.execute(
        select(RoomUser).where(RoomUser.room_id == room_id, RoomUser.user_id == user_id)
    ).scalar_one_or_none()
    is_manager = (
        membership is not None
        and membership.role == RoomRole.MANAGER
        and membership.status == RoomUserStatus.ACTIVE
    )

    grants = db.execute(
        select(RoomModeratorPermissions).where(
            RoomModeratorPermissions.room_id == room_id,
            RoomModeratorPermissions.user_id == user_id,
            RoomModeratorPermissions.is_active.is_(True),
        )
    ).scalar_one_or_none()

    return Authority(
        has_permission=is_manager or action.allowed_by(grants),
        is_owner=False,
        is_manager=is_manager,
        granted_permissions=_grants_snapshot(grants),
    )


def require_authority(
    user_id: int, room_id: int, action: ModerationAction, db: Session
) -> Authority:
    """Resolve authority and raise :class:`ForbiddenError` when it is missing."""

    authority = resolve_authority(user_id, room_id, action, db)
    if not authority.has_permission:
        raise ForbiddenError(f"Insufficient permissions to {action.description}")
    return authority


__all__ = [
    "ACTION_DESCRIPTIONS",
    "Authority",
    "GRANT_FIELDS",
    "ModerationAction",
    "require_authority",
    "resolve_authority",
]
