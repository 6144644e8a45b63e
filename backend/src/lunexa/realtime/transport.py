"""Broker transport used to fan room events out between API instances."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import nats
import redis.asyncio as redis_asyncio
from nats.errors import Error as NatsError
from redis.exceptions import RedisError

from app.monitoring.metrics import realtime_transport_restarts_total


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)
_NATS_ERRORS: tuple[type[BaseException], ...] = (
    NatsError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]

ROOMS_TOPIC = "rooms"
USERS_TOPIC = "users"


@dataclass(slots=True)
class BrokerConfig:
    """Connection settings for the realtime broker."""

    redis_url: str | None = None
    nats_url: str | None = None
    namespace: str = "lunexa.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the requested broker backend cannot be used."""


class Subscription:
    """Handle returned by :meth:`RedisNATSTransport.subscribe`."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self._cleanup = cleanup

    async def close(self) -> None:
        await self._cleanup()


@dataclass(slots=True)
class _RedisReader:
    channel: str
    handler: MessageHandler
    task: asyncio.Task[Any] | None = None
    active: bool = True


def _decode(raw: Any, where: str) -> dict[str, Any] | None:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarded malformed realtime payload", extra={"channel": where})
        return None
    return payload if isinstance(payload, dict) else None


class RedisNATSTransport:
    """JSON pub/sub over Redis, or over NATS when that is the configured backend."""

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: redis_asyncio.Redis | None = None
        self._nats: nats.aio.client.Client | None = None
        self._readers: list[_RedisReader] = []
        self._nats_subscriptions: list[Subscription] = []
        self._recovery_task: asyncio.Task[Any] | None = None
        self._recovery_lock = asyncio.Lock()

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def started(self) -> bool:
        return self._redis is not None or (self._nats is not None and self._nats.is_connected)

    async def start(self) -> None:
        if self._config.redis_url and self._redis is None:
            client = redis_asyncio.from_url(
                self._config.redis_url, encoding="utf-8", decode_responses=True
            )
            try:
                await client.ping()
            except _REDIS_ERRORS + (OSError,) as exc:
                await client.aclose()
                raise TransportUnavailableError("Failed to connect to Redis realtime backend") from exc
            self._redis = client
        if self._config.nats_url and (self._nats is None or not self._nats.is_connected):
            try:
                self._nats = await nats.connect(self._config.nats_url, name=self._config.node_id)
            except _NATS_ERRORS + (OSError,) as exc:
                raise TransportUnavailableError("Failed to connect to NATS realtime backend") from exc

    async def stop(self) -> None:
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        for reader in list(self._readers):
            reader.active = False
            await self._cancel_reader(reader)
        self._readers.clear()
        for subscription in list(self._nats_subscriptions):
            await subscription.close()
        self._nats_subscriptions.clear()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._nats is not None and self._nats.is_connected:
            await self._nats.drain()
        self._nats = None

    def _name(self, topic: str) -> str:
        prefix = self._config.namespace.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(self, topic: str, payload: dict[str, Any], *, backend: str = "redis") -> None:
        encoded = json.dumps(payload, default=str)
        name = self._name(topic)
        if backend == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not configured")
            try:
                await self._redis.publish(name, encoded)
            except _REDIS_ERRORS as exc:
                self._schedule_recovery("publish_failed")
                raise TransportUnavailableError("Redis backend is unavailable") from exc
        elif backend == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not configured")
            try:
                await self._nats.publish(name, encoded.encode("utf-8"))
            except _NATS_ERRORS as exc:
                raise TransportUnavailableError("NATS backend is unavailable") from exc
        else:
            raise TransportUnavailableError(f"Unsupported backend '{backend}'")
        logger.debug("Published realtime payload", extra={"channel": name, "backend": backend})

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------
    async def subscribe(
        self, topic: str, handler: MessageHandler, *, backend: str = "redis"
    ) -> Subscription:
        name = self._name(topic)
        if backend == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not configured")
            reader = _RedisReader(channel=name, handler=handler)
            await self._attach(reader)
            self._readers.append(reader)

            async def cleanup() -> None:
                reader.active = False
                await self._cancel_reader(reader)
                if reader in self._readers:
                    self._readers.remove(reader)

            return Subscription(name, cleanup)

        if backend == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not configured")

            async def callback(message: Any) -> None:
                payload = _decode(message.data, name)
                if payload is not None:
                    await handler(payload)

            nats_subscription = await self._nats.subscribe(name, cb=callback)
            wrapper = Subscription(name, nats_subscription.unsubscribe)
            self._nats_subscriptions.append(wrapper)
            return wrapper

        raise TransportUnavailableError(f"Unsupported backend '{backend}'")

    async def _attach(self, reader: _RedisReader) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not configured")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(reader.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc

        async def listen() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    payload = _decode(message.get("data"), reader.channel)
                    if payload is not None:
                        await reader.handler(payload)
            finally:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await pubsub.aclose()

        reader.task = asyncio.create_task(listen(), name=f"realtime-redis-{reader.channel}")
        reader.task.add_done_callback(lambda task: self._on_reader_done(reader, task))

    async def _cancel_reader(self, reader: _RedisReader) -> None:
        task, reader.task = reader.task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _on_reader_done(self, reader: _RedisReader, task: asyncio.Task[Any]) -> None:
        if not reader.active or task.cancelled() or reader.task is not task:
            return
        reader.task = None
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=task.exception(),
            extra={"channel": reader.channel},
        )
        self._schedule_recovery("reader_stopped")

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def _schedule_recovery(self, reason: str) -> None:
        if not self._config.redis_url:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(
            self._recover(reason), name="realtime-redis-recovery"
        )

    async def _recover(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            try:
                await self._reconnect()
            except Exception:
                attempt += 1
                logger.exception(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info(
            "Redis realtime backend recovered",
            extra={"reason": reason, "subscriptions": len(self._readers)},
        )

    async def _reconnect(self) -> None:
        async with self._recovery_lock:
            for reader in self._readers:
                await self._cancel_reader(reader)
            if self._redis is not None:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await self._redis.aclose()
                self._redis = None
            await self.start()
            for reader in self._readers:
                if reader.active:
                    await self._attach(reader)
