"""Realtime delivery of room events to connected sockets."""

from .broadcaster import (  # noqa: F401
    DEFAULT_DISCONNECT_REASON,
    RoomBroadcaster,
    get_broadcaster,
    safe_send_json,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "DEFAULT_DISCONNECT_REASON",
    "RoomBroadcaster",
    "get_broadcaster",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
