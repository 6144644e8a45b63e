from __future__ import annotations

import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import InternalError, InvalidOperationError, NotFoundError
from app.database import write_transaction
from app.models import MicSeatStatus, Room, RoomMicControl, User


@pytest.fixture()
def room(db_session) -> Room:
    owner = User(username="owner")
    db_session.add(owner)
    db_session.commit()
    room = Room(room_code="SA1994181", name="Lounge", owner_id=owner.id, max_seats=5)
    db_session.add(room)
    db_session.commit()
    return room


def _seat(room: Room, number: int) -> RoomMicControl:
    return RoomMicControl(
        room_id=room.id, seat_number=number, status=MicSeatStatus.AVAILABLE, invited_users=[]
    )


def _seat_count(db_session) -> int:
    return db_session.execute(select(func.count(RoomMicControl.id))).scalar_one()


def test_unique_violation_becomes_conflict(db_session, room, caplog):
    db_session.add(_seat(room, 2))
    db_session.commit()

    with caplog.at_level(logging.INFO, logger="app.database"):
        with pytest.raises(InvalidOperationError) as excinfo:
            with write_transaction(db_session, "invite_to_mic"):
                db_session.add(_seat(room, 2))
                db_session.flush()

    assert excinfo.value.detail == "Seat is already taken"
    assert "Conflicting write during invite_to_mic" in caplog.text
    assert _seat_count(db_session) == 1


def test_conflict_detail_can_be_overridden(db_session, room):
    db_session.add(_seat(room, 2))
    db_session.commit()

    with pytest.raises(InvalidOperationError) as excinfo:
        with write_transaction(db_session, "auto_join", conflict_detail="Already in room"):
            db_session.add(_seat(room, 2))

    assert excinfo.value.detail == "Already in room"


def test_domain_error_rolls_back_pending_writes(db_session, room):
    with pytest.raises(NotFoundError):
        with write_transaction(db_session, "kick_user"):
            db_session.add(_seat(room, 3))
            db_session.flush()
            raise NotFoundError("User not in room")

    assert _seat_count(db_session) == 0


def test_other_database_failures_become_internal_errors(db_session, room, caplog):
    with caplog.at_level(logging.ERROR, logger="app.database"):
        with pytest.raises(InternalError) as excinfo:
            with write_transaction(db_session, "lock_mic"):
                db_session.add(_seat(room, 4))
                raise OperationalError("UPDATE room_mic_control", {}, Exception("database is locked"))

    assert excinfo.value.detail == "Failed to lock mic"
    assert "Database failure during lock_mic" in caplog.text
    assert _seat_count(db_session) == 0
