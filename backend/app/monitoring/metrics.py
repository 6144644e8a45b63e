"""Metric definitions for room moderation and realtime delivery."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by the room broadcaster.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic", "backend"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Number of realtime payloads that could not be handed to the broker.",
    label_names=("topic", "backend", "reason"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of times a broker connection was re-established.",
    label_names=("backend", "reason"),
)

moderation_actions_total = registry.counter(
    "room_moderation_actions_total",
    "Moderation actions committed, by action tag.",
    label_names=("action",),
)

room_lifecycle_total = registry.counter(
    "room_lifecycle_operations_total",
    "Room lifecycle operations committed, by operation.",
    label_names=("operation",),
)
