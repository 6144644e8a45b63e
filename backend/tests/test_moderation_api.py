"""Integration tests for the moderation endpoints."""

from __future__ import annotations

import pytest


@pytest.fixture()
def people(make_user) -> dict[str, int]:
    return {name: make_user(name) for name in ("owner", "guest", "listener", "helper")}


@pytest.fixture()
def room_code(client, auth_headers, people) -> str:
    response = client.post(
        "/api/rooms", json={"name": "Studio", "max_seats": 6}, headers=auth_headers(people["owner"])
    )
    code = response.json()["room_code"]
    for name in ("guest", "listener", "helper"):
        joined = client.post(f"/api/rooms/{code}/join", headers=auth_headers(people[name]))
        assert joined.status_code == 200, joined.text
    return code


def _url(room_code: str, path: str) -> str:
    return f"/api/rooms/{room_code}/moderation/{path}"


def test_member_without_authority_cannot_kick(client, auth_headers, people, room_code):
    response = client.post(
        _url(room_code, "kick-user"),
        json={"target_user_id": people["guest"]},
        headers=auth_headers(people["listener"]),
    )

    assert response.status_code == 403
    assert response.json() == {"detail": "Insufficient permissions to kick users"}


def test_invite_to_mic_marks_seat_invite_only(client, auth_headers, people, room_code):
    response = client.post(
        _url(room_code, "invite-to-mic"),
        json={"target_user_id": people["guest"], "seat_number": 5},
        headers=auth_headers(people["owner"]),
    )

    assert response.status_code == 200, response.text
    seat = response.json()["seat"]
    assert seat["status"] == "invited_only"
    assert seat["invited_users"] == [people["guest"]]

    response = client.get(_url(room_code, "mic-control"), headers=auth_headers(people["owner"]))
    assert [entry["seat_number"] for entry in response.json()] == [5]


@pytest.mark.parametrize(
    "path,payload",
    [
        ("ban-user", {"target_user_id": 2, "duration": "2_days"}),
        ("ban-user", {"target_user_id": 2, "duration": "1_day", "reason": "x" * 501}),
        ("lock-mic", {"seat_number": 0, "lock": True}),
        ("invite-to-mic", {"target_user_id": "someone", "seat_number": 1}),
        ("change-mic", {"target_user_id": 2, "from_seat": 1}),
    ],
)
def test_malformed_bodies_are_rejected(client, auth_headers, people, room_code, path, payload):
    response = client.post(_url(room_code, path), json=payload, headers=auth_headers(people["owner"]))

    assert response.status_code == 422


def test_seat_beyond_capacity_is_a_conflict(client, auth_headers, people, room_code):
    response = client.post(
        _url(room_code, "lock-mic"),
        json={"seat_number": 7, "lock": True},
        headers=auth_headers(people["owner"]),
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Seat number must be between 1 and 6"}


def test_owner_cannot_be_kicked(client, auth_headers, people, room_code):
    response = client.post(
        _url(room_code, "kick-user"),
        json={"target_user_id": people["owner"]},
        headers=auth_headers(people["owner"]),
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Cannot kick room owner"}


def test_ban_flow_blocks_rejoin_and_is_audited(client, auth_headers, people, room_code):
    owner = auth_headers(people["owner"])

    response = client.post(
        _url(room_code, "ban-user"),
        json={"target_user_id": people["guest"], "duration": "1_day", "reason": "spam"},
        headers=owner,
    )
    assert response.status_code == 200, response.text
    ban = response.json()["ban"]
    assert ban["duration"] == "1_day"
    assert ban["expires_at"] is not None

    response = client.post(f"/api/rooms/{room_code}/join", headers=auth_headers(people["guest"]))
    assert response.status_code == 403
    assert response.json() == {"detail": "You are banned from this room"}

    bans = client.get(_url(room_code, "bans"), headers=owner).json()
    assert [(entry["user_id"], entry["is_active"]) for entry in bans] == [(people["guest"], True)]

    events = client.get(_url(room_code, "events"), headers=owner).json()
    assert events[0]["action"] == "ban_user"
    assert events[0]["metadata"] == {"duration": "1_day"}
    assert events[0]["target_user"]["username"] == "guest"
    assert events[0]["moderator"]["username"] == "owner"

    response = client.post(
        _url(room_code, "unban-user"), json={"target_user_id": people["guest"]}, headers=owner
    )
    assert response.status_code == 200

    response = client.post(f"/api/rooms/{room_code}/join", headers=auth_headers(people["guest"]))
    assert response.status_code == 200


def test_granted_moderator_can_kick_but_not_view_events(client, auth_headers, people, room_code):
    owner = auth_headers(people["owner"])
    helper = auth_headers(people["helper"])

    response = client.put(
        _url(room_code, f"moderators/{people['helper']}"),
        json={"can_kick_users": True},
        headers=owner,
    )
    assert response.status_code == 200, response.text
    assert response.json()["can_kick_users"] is True
    assert response.json()["can_ban_users"] is False

    response = client.post(
        _url(room_code, "kick-user"), json={"target_user_id": people["guest"]}, headers=helper
    )
    assert response.status_code == 200

    response = client.get(_url(room_code, "events"), headers=helper)
    assert response.status_code == 403

    moderators = client.get(_url(room_code, "moderators"), headers=owner).json()
    assert [entry["user_id"] for entry in moderators] == [people["helper"]]

    response = client.delete(_url(room_code, f"moderators/{people['helper']}"), headers=owner)
    assert response.status_code == 204

    response = client.post(
        _url(room_code, "kick-user"), json={"target_user_id": people["listener"]}, headers=helper
    )
    assert response.status_code == 403


def test_mute_user_blocks_their_mic(client, auth_headers, people, room_code):
    response = client.post(
        _url(room_code, "mute-user"),
        json={"target_user_id": people["guest"], "mute": True},
        headers=auth_headers(people["owner"]),
    )
    assert response.status_code == 200
    assert response.json()["message"] == "User muted"

    response = client.post(f"/api/rooms/{room_code}/toggle-mic", headers=auth_headers(people["guest"]))
    assert response.status_code == 409
    assert response.json() == {"detail": "You have been muted by a moderator"}


def test_change_mic_moves_member(client, auth_headers, people, room_code):
    room = client.get(f"/api/rooms/{room_code}", headers=auth_headers(people["owner"])).json()
    seat = next(m["seat_number"] for m in room["members"] if m["user_id"] == people["guest"])

    response = client.post(
        _url(room_code, "change-mic"),
        json={"target_user_id": people["guest"], "from_seat": seat, "to_seat": 6},
        headers=auth_headers(people["owner"]),
    )

    assert response.status_code == 200, response.text
    assert response.json()["seat"]["occupied_by"] == people["guest"]


def test_change_mic_from_wrong_seat_is_a_conflict(client, auth_headers, people, room_code):
    room = client.get(f"/api/rooms/{room_code}", headers=auth_headers(people["owner"])).json()
    seat = next(m["seat_number"] for m in room["members"] if m["user_id"] == people["guest"])
    client.post(f"/api/rooms/{room_code}/toggle-mic", headers=auth_headers(people["guest"]))

    response = client.post(
        _url(room_code, "change-mic"),
        json={"target_user_id": people["guest"], "from_seat": 6, "to_seat": 5},
        headers=auth_headers(people["owner"]),
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "User is not on the source seat"}
    seats = client.get(_url(room_code, "mic-control"), headers=auth_headers(people["owner"])).json()
    assert [(entry["seat_number"], entry["occupied_by"]) for entry in seats] == [(seat, people["guest"])]


def test_metrics_count_moderation_actions(client, auth_headers, people, room_code):
    client.post(
        _url(room_code, "lock-mic"),
        json={"seat_number": 6, "lock": True},
        headers=auth_headers(people["owner"]),
    )

    body = client.get("/metrics").text

    assert 'room_moderation_actions_total{action="lock_mic"}' in body
