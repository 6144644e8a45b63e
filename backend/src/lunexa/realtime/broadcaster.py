"""Socket registry and fan-out for live room participants."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .transport import (
    BrokerConfig,
    ROOMS_TOPIC,
    RedisNATSTransport,
    Subscription,
    TransportUnavailableError,
    USERS_TOPIC,
)


logger = logging.getLogger(__name__)

DEFAULT_DISCONNECT_REASON = "You have been removed from the room"


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON to a socket that is still open; report whether it went out."""
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class RoomBroadcaster:
    """Track live sockets per room and per user and deliver events to them.

    The registry only knows about sockets held by this process. Every
    outgoing event is also handed to the broker so other instances can
    deliver it to their own sockets; events arriving from the broker with
    this node's id are ignored.
    """

    def __init__(
        self,
        transport: RedisNATSTransport,
        *,
        node_id: str,
        backend: str,
    ) -> None:
        self._room_connections: Dict[str, Dict[int, WebSocket]] = {}
        self._user_connections: Dict[int, WebSocket] = {}
        self._lock = asyncio.Lock()
        self._transport = transport
        self._node_id = node_id
        self._backend = backend
        self._subscriptions: list[tuple[str, Subscription]] = []
        self._publish_warning_logged = False

    @property
    def node_id(self) -> str:
        return self._node_id

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    async def join(self, room_code: str, user_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            bucket = self._room_connections.setdefault(room_code, {})
            if user_id not in bucket:
                realtime_connections.labels("rooms").inc()
            bucket[user_id] = websocket

    async def leave(
        self, room_code: str, user_id: int, websocket: WebSocket | None = None
    ) -> None:
        """Drop a user's room socket.

        When *websocket* is given the entry is only removed if it is still
        that socket, so a stale disconnect cannot evict a newer connection.
        """
        async with self._lock:
            bucket = self._room_connections.get(room_code)
            if not bucket or user_id not in bucket:
                return
            if websocket is not None and bucket[user_id] is not websocket:
                return
            bucket.pop(user_id)
            realtime_connections.labels("rooms").dec()
            if not bucket:
                self._room_connections.pop(room_code, None)

    async def register_global(self, user_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            if user_id not in self._user_connections:
                realtime_connections.labels("users").inc()
            self._user_connections[user_id] = websocket

    async def unregister_global(self, user_id: int, websocket: WebSocket | None = None) -> None:
        async with self._lock:
            current = self._user_connections.get(user_id)
            if current is None or (websocket is not None and current is not websocket):
                return
            self._user_connections.pop(user_id)
            realtime_connections.labels("users").dec()

    def room_user_count(self, room_code: str) -> int:
        return len(self._room_connections.get(room_code, {}))

    def room_codes(self) -> list[str]:
        return list(self._room_connections)

    def is_user_in_room(self, room_code: str, user_id: int) -> bool:
        return user_id in self._room_connections.get(room_code, {})

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def broadcast(
        self,
        room_code: str,
        message: dict[str, Any],
        *,
        exclude_user_id: int | None = None,
        publish: bool = True,
    ) -> int:
        """Send *message* to every open socket in the room.

        Closed sockets are skipped but left registered; the websocket
        endpoint removes them when the connection ends. Returns the number
        of local sockets that received the message.
        """
        async with self._lock:
            targets = [
                socket
                for user_id, socket in self._room_connections.get(room_code, {}).items()
                if user_id != exclude_user_id
            ]
        delivered = 0
        for socket in targets:
            if await safe_send_json(socket, message):
                delivered += 1
        realtime_events_total.labels("rooms", "local", message.get("type", "unknown")).inc()
        if publish:
            await self._publish(
                ROOMS_TOPIC,
                {
                    "action": "broadcast",
                    "room": room_code,
                    "message": message,
                    "exclude_user_id": exclude_user_id,
                },
            )
        return delivered

    async def broadcast_moderation_event(
        self, room_code: str, event: dict[str, Any], *, exclude_user_id: int | None = None
    ) -> int:
        message = dict(event)
        message.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        return await self.broadcast(room_code, message, exclude_user_id=exclude_user_id)

    async def send_to_user(
        self, user_id: int, message: dict[str, Any], *, publish: bool = True
    ) -> bool:
        """Best-effort unicast over the user's global socket.

        When the user is not connected here the message is forwarded to the
        other instances and ``False`` is returned.
        """
        socket = self._user_connections.get(user_id)
        delivered = socket is not None and await safe_send_json(socket, message)
        if not delivered and publish:
            await self._publish(
                USERS_TOPIC,
                {"action": "send", "user_id": user_id, "message": message},
            )
        return delivered

    async def force_disconnect(
        self,
        room_code: str,
        user_id: int,
        reason: str | None = None,
        *,
        publish: bool = True,
    ) -> None:
        """Tell the user's room socket it was removed, then forget it."""
        async with self._lock:
            socket = self._room_connections.get(room_code, {}).get(user_id)
        if socket is not None:
            await safe_send_json(
                socket,
                {
                    "type": "force_disconnect",
                    "reason": reason or DEFAULT_DISCONNECT_REASON,
                    "room": room_code,
                },
            )
            await self.leave(room_code, user_id, socket)
        realtime_events_total.labels("rooms", "local", "force_disconnect").inc()
        if publish:
            await self._publish(
                ROOMS_TOPIC,
                {
                    "action": "force_disconnect",
                    "room": room_code,
                    "user_id": user_id,
                    "reason": reason,
                },
            )

    # ------------------------------------------------------------------
    # Broker wiring
    # ------------------------------------------------------------------
    async def _handle_room_message(self, message: dict[str, Any]) -> None:
        if message.get("origin") == self._node_id:
            return
        room_code = message.get("room")
        if not isinstance(room_code, str):
            return
        action = message.get("action")
        if action == "broadcast" and isinstance(message.get("message"), dict):
            await self.broadcast(
                room_code,
                message["message"],
                exclude_user_id=message.get("exclude_user_id"),
                publish=False,
            )
        elif action == "force_disconnect":
            try:
                user_id = int(message["user_id"])
            except (KeyError, TypeError, ValueError):
                return
            await self.force_disconnect(room_code, user_id, message.get("reason"), publish=False)
        else:
            return
        realtime_events_total.labels("rooms", "in", action).inc()

    async def _handle_user_message(self, message: dict[str, Any]) -> None:
        if message.get("origin") == self._node_id:
            return
        try:
            user_id = int(message["user_id"])
        except (KeyError, TypeError, ValueError):
            return
        if isinstance(message.get("message"), dict):
            await self.send_to_user(user_id, message["message"], publish=False)
            realtime_events_total.labels("users", "in", "send").inc()

    async def start(self) -> None:
        handlers = ((ROOMS_TOPIC, self._handle_room_message), (USERS_TOPIC, self._handle_user_message))
        for topic, handler in handlers:
            try:
                subscription = await self._transport.subscribe(topic, handler, backend=self._backend)
            except TransportUnavailableError:
                logger.warning(
                    "Realtime backend unavailable; room events will be limited to this instance",
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                return
            self._subscriptions.append((topic, subscription))
            realtime_subscriptions.labels(topic, self._backend).inc()

    async def stop(self) -> None:
        for topic, subscription in self._subscriptions:
            await subscription.close()
            realtime_subscriptions.labels(topic, self._backend).dec()
        self._subscriptions.clear()

    async def _publish(self, topic: str, payload: dict[str, Any]) -> None:
        payload = {**payload, "origin": self._node_id}
        action = payload.get("action", "unknown")
        try:
            await self._transport.publish(topic, payload, backend=self._backend)
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while publishing %s event; operating in local-only mode",
                    action,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels(topic, self._backend, "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels(topic, self._backend, "error").inc()
            logger.exception("Unexpected error while publishing %s event", action)
        else:
            self._publish_warning_logged = False
            realtime_events_total.labels(topic, "out", action).inc()


# ---------------------------------------------------------------------------
# Module level lifecycle helpers
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisNATSTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        nats_url=settings.realtime_nats_url,
        namespace=settings.realtime_namespace,
        node_id=_node_id,
    )
)

broadcaster = RoomBroadcaster(
    transport,
    node_id=_node_id,
    backend=settings.realtime_backend_preference,
)


async def startup_realtime() -> None:
    try:
        await transport.start()
    except TransportUnavailableError:
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    if transport.started:
        await broadcaster.start()


async def shutdown_realtime() -> None:
    await broadcaster.stop()
    await transport.stop()


def get_broadcaster() -> RoomBroadcaster:
    return broadcaster


__all__ = [
    "DEFAULT_DISCONNECT_REASON",
    "RoomBroadcaster",
    "get_broadcaster",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
