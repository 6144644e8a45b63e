from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import (
    BanDuration,
    MicSeatStatus,
    RoomRole,
    RoomUserStatus,
    RoomVisibility,
)


def _enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class User(Base):
    """Portal user as seen by the room subsystem."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128))
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    memberships: Mapped[list["RoomUser"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def public_name(self) -> str:
        return self.display_name or self.username


class Room(Base):
    """Voice room with a fixed number of mic seats."""

    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    room_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    visibility: Mapped[RoomVisibility] = mapped_column(
        _enum(RoomVisibility, "room_visibility"),
        default=RoomVisibility.PUBLIC,
        nullable=False,
    )
    max_seats: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    current_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    owner: Mapped[User] = relationship(foreign_keys=[owner_id])
    members: Mapped[list["RoomUser"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    mic_controls: Mapped[list["RoomMicControl"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="RoomMicControl.seat_number"
    )
    bans: Mapped[list["RoomBan"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    moderation_events: Mapped[list["RoomModerationEvent"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    moderator_permissions: Mapped[list["RoomModeratorPermissions"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    analytics: Mapped[list["RoomAnalytics"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )


class RoomUser(Base):
    """Membership of a user in a room, including the seat they hold."""

    __tablename__ = "room_users"
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_room_user"),
        # NULL seats never collide, so unseated members are unaffected.
        UniqueConstraint("room_id", "seat_number", name="uq_room_user_seat"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[RoomRole] = mapped_column(
        _enum(RoomRole, "room_role"), default=RoomRole.MEMBER, nullable=False
    )
    seat_number: Mapped[int | None] = mapped_column(Integer)
    is_mic_on: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_invited_to_mic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[RoomUserStatus] = mapped_column(
        _enum(RoomUserStatus, "room_user_status"),
        default=RoomUserStatus.ACTIVE,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    messages_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="memberships")


class RoomMicControl(Base):
    """Per-seat lock, mute and invitation state, created on first mutation."""

    __tablename__ = "room_mic_control"
    __table_args__ = (UniqueConstraint("room_id", "seat_number", name="uq_room_mic_seat"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[MicSeatStatus] = mapped_column(
        _enum(MicSeatStatus, "mic_seat_status"),
        default=MicSeatStatus.AVAILABLE,
        nullable=False,
    )
    occupied_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    locked_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    is_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    muted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    invited_users: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="mic_controls")
    occupant: Mapped[User | None] = relationship(foreign_keys=[occupied_by])
    locker: Mapped[User | None] = relationship(foreign_keys=[locked_by])
    muter: Mapped[User | None] = relationship(foreign_keys=[muted_by])


class RoomBan(Base):
    """Ban of a user from a room; authoritative until lifted or expired."""

    __tablename__ = "room_bans"
    __table_args__ = (Index("ix_room_bans_room_user", "room_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    banned_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    duration: Mapped[BanDuration] = mapped_column(_enum(BanDuration, "ban_duration"), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    lifted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    lifted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    room: Mapped[Room] = relationship(back_populates="bans")
    user: Mapped[User] = relationship(foreign_keys=[user_id])
    banned_by_user: Mapped[User | None] = relationship(foreign_keys=[banned_by])
    lifted_by_user: Mapped[User | None] = relationship(foreign_keys=[lifted_by])


class RoomModerationEvent(Base):
    """Append-only audit record of a moderation action."""

    __tablename__ = "room_moderation_events"
    __table_args__ = (Index("ix_room_moderation_events_room_created", "room_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    moderator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    target_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="moderation_events")
    moderator: Mapped[User | None] = relationship(foreign_keys=[moderator_id])
    target_user: Mapped[User | None] = relationship(foreign_keys=[target_user_id])


class RoomModeratorPermissions(Base):
    """Granular per-action moderation grants for a non-owner user."""

    __tablename__ = "room_moderator_permissions"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_moderator"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    can_invite_to_mic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_remove_from_mic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_lock_mic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_mute_mic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_kick_users: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_ban_users: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_mute_users: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_moderators: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="moderator_permissions")
    user: Mapped[User] = relationship(foreign_keys=[user_id])


class RoomAnalytics(Base):
    """Daily counters for a room; a zeroed row is created with the room."""

    __tablename__ = "room_analytics"

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_visits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_visitors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    peak_concurrent_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    room: Mapped[Room] = relationship(back_populates="analytics")
