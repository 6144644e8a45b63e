"""Bridge from synchronous request handlers to the async room broadcaster."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import anyio

from lunexa.realtime import get_broadcaster

logger = logging.getLogger(__name__)


def _dispatch(description: str, factory: Callable[[], Awaitable[Any]]) -> None:
    """Run a broadcaster call from whatever context the caller is in.

    Delivery problems are logged and never reach the caller; the database
    write that triggered the event has already been committed.
    """

    async def _send() -> None:
        try:
            await factory()
        except Exception:
            logger.exception("Failed to deliver %s", description)

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        try:
            anyio.from_thread.run(_send)
        except RuntimeError:
            # Not inside an AnyIO worker thread (scripts, unit tests).
            asyncio.run(_send())
    else:
        loop.create_task(_send())


def publish_room_event(
    room_code: str, message: dict[str, Any], *, exclude_user_id: int | None = None
) -> None:
    broadcaster = get_broadcaster()
    _dispatch(
        f"{message.get('type')} event",
        lambda: broadcaster.broadcast(room_code, message, exclude_user_id=exclude_user_id),
    )


def publish_moderation_event(room_code: str, event: dict[str, Any]) -> None:
    """Broadcast a moderation outcome; a timestamp is stamped on delivery."""

    broadcaster = get_broadcaster()
    _dispatch(
        f"{event.get('type')} moderation event",
        lambda: broadcaster.broadcast_moderation_event(room_code, event),
    )


def disconnect_user(room_code: str, user_id: int, reason: str | None = None) -> None:
    broadcaster = get_broadcaster()
    _dispatch(
        "forced disconnect",
        lambda: broadcaster.force_disconnect(room_code, user_id, reason),
    )


def notify_user(user_id: int, message: dict[str, Any]) -> None:
    broadcaster = get_broadcaster()
    _dispatch(
        f"{message.get('type')} notification",
        lambda: broadcaster.send_to_user(user_id, message),
    )
