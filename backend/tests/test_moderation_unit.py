"""Unit tests for moderation actions against an in-memory database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.core.errors import ForbiddenError, InvalidOperationError, NotFoundError
from app.models import (
    BanDuration,
    MicSeatStatus,
    Room,
    RoomBan,
    RoomMicControl,
    RoomModerationEvent,
    RoomRole,
    RoomUser,
    RoomUserStatus,
    User,
)
from app.monitoring.metrics import moderation_actions_total
from app.services import lifecycle, moderation


@pytest.fixture(autouse=True)
def reset_moderation_metrics() -> None:
    moderation_actions_total._samples.clear()
    yield
    moderation_actions_total._samples.clear()


@pytest.fixture()
def users(db_session):
    created = {name: User(username=name) for name in ("owner", "manager", "target", "listener")}
    db_session.add_all(created.values())
    db_session.commit()
    return created


@pytest.fixture()
def room(db_session, users):
    room = Room(
        room_code="SA1994181",
        name="Lounge",
        owner_id=users["owner"].id,
        max_seats=5,
        current_users=4,
    )
    db_session.add(room)
    db_session.commit()
    db_session.add_all(
        [
            RoomUser(room_id=room.id, user_id=users["owner"].id, role=RoomRole.OWNER, seat_number=1),
            RoomUser(room_id=room.id, user_id=users["manager"].id, role=RoomRole.MANAGER, seat_number=2),
            RoomUser(room_id=room.id, user_id=users["target"].id, seat_number=4),
            RoomUser(room_id=room.id, user_id=users["listener"].id),
        ]
    )
    db_session.commit()
    return room


def _membership(db_session, room, user) -> RoomUser:
    stmt = select(RoomUser).where(RoomUser.room_id == room.id, RoomUser.user_id == user.id)
    return db_session.execute(stmt).scalar_one()


def _events(db_session, room) -> list[RoomModerationEvent]:
    stmt = select(RoomModerationEvent).where(RoomModerationEvent.room_id == room.id)
    return list(db_session.execute(stmt).scalars())


def test_owner_invites_member_to_available_seat(db_session, users, room):
    seat = moderation.invite_to_mic(db_session, room, users["owner"].id, users["target"].id, 3)

    assert seat.seat_number == 3
    assert seat.status == MicSeatStatus.INVITED_ONLY
    assert users["target"].id in seat.invited_users
    assert _membership(db_session, room, users["target"]).is_invited_to_mic is True

    (event,) = _events(db_session, room)
    assert event.action == "invite_to_mic"
    assert event.target_user_id == users["target"].id
    assert event.details == {"seat_number": 3}
    assert moderation_actions_total.value("invite_to_mic") == 1


def test_invite_to_locked_seat_is_rejected(db_session, users, room):
    moderation.lock_mic(db_session, room, users["owner"].id, 3, True)

    with pytest.raises(InvalidOperationError) as excinfo:
        moderation.invite_to_mic(db_session, room, users["owner"].id, users["target"].id, 3)

    assert excinfo.value.detail == "Mic seat is not available"
    assert _membership(db_session, room, users["target"]).is_invited_to_mic is False


def test_seat_number_outside_room_capacity_is_rejected(db_session, users, room):
    with pytest.raises(InvalidOperationError) as excinfo:
        moderation.invite_to_mic(db_session, room, users["owner"].id, users["target"].id, 6)

    assert excinfo.value.detail == "Seat number must be between 1 and 5"


def test_manager_bans_member_for_one_day(db_session, users, room):
    ban = moderation.ban_user(
        db_session,
        room,
        users["manager"].id,
        users["target"].id,
        BanDuration.ONE_DAY,
        "spam",
    )

    assert ban.is_active is True
    assert ban.expires_at is not None
    assert ban.expires_at - ban.created_at == timedelta(hours=24)

    membership = _membership(db_session, room, users["target"])
    assert membership.status == RoomUserStatus.BANNED
    assert membership.is_active is False
    assert membership.seat_number is None

    (event,) = _events(db_session, room)
    assert event.action == "ban_user"
    assert event.moderator_id == users["manager"].id
    assert event.target_user_id == users["target"].id
    assert event.reason == "spam"
    assert event.details == {"duration": "1_day"}

    db_session.refresh(room)
    assert room.current_users == 3


def test_ban_expiry_offsets():
    banned_at = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    assert moderation.compute_ban_expiry(BanDuration.SEVEN_DAYS, banned_at) == banned_at + timedelta(hours=168)
    assert moderation.compute_ban_expiry(BanDuration.ONE_YEAR, banned_at) == banned_at + timedelta(days=365)
    assert moderation.compute_ban_expiry(BanDuration.PERMANENT, banned_at) is None


def test_permanent_ban_has_no_expiry(db_session, users, room):
    ban = moderation.ban_user(
        db_session, room, users["owner"].id, users["target"].id, BanDuration.PERMANENT
    )

    assert ban.expires_at is None
    (event,) = _events(db_session, room)
    assert event.expires_at is None


@pytest.mark.parametrize("verb", ["kick", "ban", "mute"])
def test_owner_cannot_be_targeted(db_session, users, room, verb):
    owner_id = users["owner"].id
    actions = {
        "kick": lambda: moderation.kick_user(db_session, room, users["manager"].id, owner_id),
        "ban": lambda: moderation.ban_user(
            db_session, room, users["manager"].id, owner_id, BanDuration.ONE_DAY
        ),
        "mute": lambda: moderation.mute_user(db_session, room, users["manager"].id, owner_id, True),
    }

    with pytest.raises(InvalidOperationError) as excinfo:
        actions[verb]()

    assert excinfo.value.detail == f"Cannot {verb} room owner"
    assert _membership(db_session, room, users["owner"]).status == RoomUserStatus.ACTIVE
    assert _events(db_session, room) == []


def test_member_without_authority_changes_nothing(db_session, users, room):
    with pytest.raises(ForbiddenError):
        moderation.kick_user(db_session, room, users["listener"].id, users["target"].id)

    assert _membership(db_session, room, users["target"]).is_active is True
    assert _events(db_session, room) == []


def test_locking_twice_keeps_seat_locked(db_session, users, room):
    moderation.lock_mic(db_session, room, users["owner"].id, 3, True)
    seat = moderation.lock_mic(db_session, room, users["manager"].id, 3, True)

    assert seat.status == MicSeatStatus.LOCKED
    assert seat.locked_by == users["manager"].id
    assert [event.action for event in _events(db_session, room)] == ["lock_mic", "lock_mic"]

    unlocked = moderation.lock_mic(db_session, room, users["owner"].id, 3, False)
    assert unlocked.status == MicSeatStatus.AVAILABLE
    assert unlocked.locked_by is None


def test_locking_occupied_seat_turns_occupant_mic_off(db_session, users, room):
    membership = _membership(db_session, room, users["target"])
    membership.is_mic_on = True
    db_session.add(
        RoomMicControl(
            room_id=room.id,
            seat_number=4,
            status=MicSeatStatus.OCCUPIED,
            occupied_by=users["target"].id,
            invited_users=[],
        )
    )
    db_session.commit()

    seat = moderation.lock_mic(db_session, room, users["owner"].id, 4, True)

    assert seat.status == MicSeatStatus.LOCKED
    assert seat.occupied_by is None
    membership = _membership(db_session, room, users["target"])
    assert membership.is_mic_on is False
    assert membership.seat_number is None

    newcomer = User(username="newcomer")
    db_session.add(newcomer)
    db_session.commit()
    with pytest.raises(InvalidOperationError):
        lifecycle.join_room(db_session, room, newcomer, seat_number=4)


def test_locking_seat_unseats_member_without_live_mic(db_session, users, room):
    moderation.lock_mic(db_session, room, users["owner"].id, 2, True)

    assert _membership(db_session, room, users["manager"]).seat_number is None
    assert _membership(db_session, room, users["target"]).seat_number == 4


def test_muted_seat_blocks_toggle_mic(db_session, users, room):
    moderation.mute_mic(db_session, room, users["owner"].id, 4, True)

    with pytest.raises(InvalidOperationError) as excinfo:
        lifecycle.toggle_mic(db_session, room, users["target"])

    assert excinfo.value.detail == "Mic seat is muted"


def test_muted_user_cannot_turn_mic_on(db_session, users, room):
    moderation.mute_user(db_session, room, users["manager"].id, users["target"].id, True, "noise")

    with pytest.raises(InvalidOperationError) as excinfo:
        lifecycle.toggle_mic(db_session, room, users["target"])

    assert excinfo.value.detail == "You have been muted by a moderator"

    moderation.mute_user(db_session, room, users["manager"].id, users["target"].id, False)
    membership = lifecycle.toggle_mic(db_session, room, users["target"])
    assert membership.is_mic_on is True


def test_change_mic_refuses_seat_held_by_another_member(db_session, users, room):
    with pytest.raises(InvalidOperationError) as excinfo:
        moderation.change_mic(db_session, room, users["owner"].id, users["target"].id, 4, 2)

    assert excinfo.value.detail == "Target mic seat is already occupied"
    assert _membership(db_session, room, users["target"]).seat_number == 4


def test_change_mic_moves_member(db_session, users, room):
    seat = moderation.change_mic(db_session, room, users["manager"].id, users["target"].id, 4, 5)

    assert seat.seat_number == 5
    assert seat.status == MicSeatStatus.OCCUPIED
    assert seat.occupied_by == users["target"].id
    assert _membership(db_session, room, users["target"]).seat_number == 5


def _held_seats(db_session, room, user) -> list[int]:
    stmt = (
        select(RoomMicControl.seat_number)
        .where(RoomMicControl.room_id == room.id, RoomMicControl.occupied_by == user.id)
        .order_by(RoomMicControl.seat_number)
    )
    return list(db_session.execute(stmt).scalars())


def test_change_mic_requires_the_seat_the_member_holds(db_session, users, room):
    lifecycle.toggle_mic(db_session, room, users["target"])

    with pytest.raises(InvalidOperationError) as excinfo:
        moderation.change_mic(db_session, room, users["owner"].id, users["target"].id, 3, 5)

    assert excinfo.value.detail == "User is not on the source seat"
    assert _held_seats(db_session, room, users["target"]) == [4]
    assert _membership(db_session, room, users["target"]).seat_number == 4


def test_change_mic_with_live_mic_frees_the_source_seat(db_session, users, room):
    lifecycle.toggle_mic(db_session, room, users["target"])

    moderation.change_mic(db_session, room, users["owner"].id, users["target"].id, 4, 5)

    assert _held_seats(db_session, room, users["target"]) == [5]
    source = db_session.execute(
        select(RoomMicControl).where(RoomMicControl.room_id == room.id, RoomMicControl.seat_number == 4)
    ).scalar_one()
    assert source.status == MicSeatStatus.AVAILABLE

    newcomer = User(username="newcomer")
    db_session.add(newcomer)
    db_session.commit()
    assert lifecycle.join_room(db_session, room, newcomer, seat_number=4).seat_number == 4


def test_remove_from_mic_turns_off_displaced_occupant(db_session, users, room):
    lifecycle.toggle_mic(db_session, room, users["target"])

    moderation.remove_from_mic(db_session, room, users["owner"].id, users["listener"].id, 4)

    assert _membership(db_session, room, users["target"]).is_mic_on is False
    assert _held_seats(db_session, room, users["target"]) == []


def test_remove_from_mic_resets_seat(db_session, users, room):
    moderation.invite_to_mic(db_session, room, users["owner"].id, users["target"].id, 3)

    seat = moderation.remove_from_mic(db_session, room, users["owner"].id, users["target"].id, 3)

    assert seat.status == MicSeatStatus.AVAILABLE
    assert seat.invited_users == []
    membership = _membership(db_session, room, users["target"])
    assert membership.is_invited_to_mic is False
    assert membership.is_mic_on is False


def test_kicked_user_can_join_again(db_session, users, room):
    moderation.kick_user(db_session, room, users["owner"].id, users["target"].id, "cool off")

    membership = _membership(db_session, room, users["target"])
    assert membership.status == RoomUserStatus.KICKED
    assert membership.is_active is False
    db_session.refresh(room)
    assert room.current_users == 3

    rejoined = lifecycle.join_room(db_session, room, users["target"])

    assert rejoined.is_active is True
    assert rejoined.status == RoomUserStatus.ACTIVE
    assert rejoined.seat_number == 3


def test_banned_user_cannot_join_until_unbanned(db_session, users, room):
    moderation.ban_user(db_session, room, users["owner"].id, users["target"].id, BanDuration.SEVEN_DAYS)

    with pytest.raises(ForbiddenError) as excinfo:
        lifecycle.join_room(db_session, room, users["target"])
    assert excinfo.value.detail == "You are banned from this room"

    lifted = moderation.unban_user(db_session, room, users["owner"].id, users["target"].id)
    assert len(lifted) == 1
    ban = db_session.execute(select(RoomBan)).scalar_one()
    assert ban.is_active is False
    assert ban.lifted_by == users["owner"].id

    membership = lifecycle.join_room(db_session, room, users["target"])
    assert membership.is_active is True


def test_expired_ban_does_not_block_join(db_session, users, room):
    moderation.ban_user(db_session, room, users["owner"].id, users["target"].id, BanDuration.ONE_DAY)
    ban = db_session.execute(select(RoomBan)).scalar_one()
    ban.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db_session.commit()

    membership = lifecycle.join_room(db_session, room, users["target"])

    assert membership.is_active is True


def test_unban_without_active_ban_is_not_found(db_session, users, room):
    with pytest.raises(NotFoundError) as excinfo:
        moderation.unban_user(db_session, room, users["owner"].id, users["target"].id)

    assert excinfo.value.detail == "User is not banned"


def test_ban_accepts_user_outside_the_room(db_session, users, room):
    outsider = User(username="outsider")
    db_session.add(outsider)
    db_session.commit()

    moderation.ban_user(db_session, room, users["owner"].id, outsider.id, BanDuration.THIRTY_DAYS)

    with pytest.raises(ForbiddenError):
        lifecycle.join_room(db_session, room, outsider)


def test_grant_and_revoke_moderator(db_session, users, room):
    record = moderation.grant_moderator(
        db_session,
        room,
        users["owner"].id,
        users["listener"].id,
        {"can_kick_users": True},
    )
    assert record.can_kick_users is True
    assert record.can_ban_users is False
    assert record.granted_by == users["owner"].id

    moderation.kick_user(db_session, room, users["listener"].id, users["target"].id)
    with pytest.raises(ForbiddenError):
        moderation.lock_mic(db_session, room, users["listener"].id, 3, True)

    moderation.revoke_moderator(db_session, room, users["owner"].id, users["listener"].id)
    assert moderation.list_moderators(db_session, room, users["owner"].id) == []

    with pytest.raises(NotFoundError):
        moderation.revoke_moderator(db_session, room, users["owner"].id, users["listener"].id)


def test_grant_rejects_unknown_permission(db_session, users, room):
    with pytest.raises(InvalidOperationError):
        moderation.grant_moderator(
            db_session, room, users["owner"].id, users["listener"].id, {"can_delete_room": True}
        )


def test_events_are_listed_newest_first(db_session, users, room):
    moderation.lock_mic(db_session, room, users["owner"].id, 3, True)
    moderation.mute_mic(db_session, room, users["owner"].id, 3, True)
    moderation.kick_user(db_session, room, users["owner"].id, users["target"].id)

    events = moderation.list_events(db_session, room, users["manager"].id, limit=2)

    assert [event.action for event in events] == ["kick_user", "mute_mic"]
    assert events[0].target_user.username == "target"
    assert events[0].moderator.username == "owner"

    with pytest.raises(ForbiddenError):
        moderation.list_events(db_session, room, users["listener"].id)
