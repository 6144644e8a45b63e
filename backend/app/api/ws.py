"""WebSocket endpoints for real-time room updates."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from sqlalchemy import select
from sqlalchemy.orm import Session

from lunexa.realtime import get_broadcaster, safe_send_json

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.core.errors import NotFoundError
from app.database import get_db_session
from app.models import Room, RoomMicControl, User
from app.schemas import MicControlRead, RoomMemberRead
from app.services.lifecycle import load_room

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            if interval <= 0:
                should_ping = True
            else:
                should_ping = now - last_activity >= interval and (
                    last_ping_sent is None or now - last_ping_sent >= interval
                )

            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


def _room_snapshot(room: Room, members, db: Session) -> dict[str, Any]:
    seats = db.execute(
        select(RoomMicControl)
        .where(RoomMicControl.room_id == room.id)
        .order_by(RoomMicControl.seat_number)
    ).scalars()
    return {
        "type": "room_snapshot",
        "room": room.room_code,
        "max_seats": room.max_seats,
        "is_locked": room.is_locked,
        "members": [RoomMemberRead.model_validate(member).model_dump(mode="json") for member in members],
        "seats": [MicControlRead.model_validate(seat).model_dump(mode="json") for seat in seats],
    }


def _is_ping(raw_message: str) -> bool:
    if raw_message.strip().lower() == "ping":
        return True
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        return False
    return isinstance(payload, dict) and payload.get("type") == "ping"


async def _pump(websocket: WebSocket) -> None:
    async for raw_message in iter_keepalive_messages(
        websocket,
        websocket.receive_text,
        timeout_seconds=settings.websocket_keepalive_timeout_seconds,
        ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
    ):
        if raw_message and _is_ping(raw_message):
            await safe_send_json(websocket, {"type": "pong"})


@router.websocket("/rooms/{room_code}")
async def websocket_room(websocket: WebSocket, room_code: str) -> None:
    """Stream room and moderation events to an active member of the room."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    with get_db_session() as db:
        try:
            room, members = load_room(db, room_code)
        except NotFoundError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Room not found")
            return
        if not any(member.user_id == user.id for member in members):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Not a room member")
            return
        snapshot = _room_snapshot(room, members, db)

    broadcaster = get_broadcaster()
    await websocket.accept()
    await broadcaster.join(room_code, user.id, websocket)
    logger.debug("User %s subscribed to room %s", user.id, room_code)
    try:
        await safe_send_json(websocket, snapshot)
        await _pump(websocket)
    finally:
        await broadcaster.leave(room_code, user.id, websocket)


@router.websocket("/notifications")
async def websocket_notifications(websocket: WebSocket) -> None:
    """Personal channel used for mic invitations and other direct notices."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    broadcaster = get_broadcaster()
    await websocket.accept()
    await broadcaster.register_global(user.id, websocket)
    try:
        await safe_send_json(websocket, {"type": "connected", "user_id": user.id})
        await _pump(websocket)
    finally:
        await broadcaster.unregister_global(user.id, websocket)
