"""Prometheus metrics for the chat service."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and the /metrics route only see service metrics
REGISTRY = CollectorRegistry()

# ──────────────────────────────────────────────────────────────────────────────
# Realtime metrics
# ──────────────────────────────────────────────────────────────────────────────

websocket_connections_total = Gauge(
    "websocket_connections_total",
    "Current number of active WebSocket connections",
    registry=REGISTRY,
)

presence_online_users = Gauge(
    "presence_online_users",
    "Current number of users with at least one live connection",
    registry=REGISTRY,
)

presence_transitions_total = Counter(
    "presence_transitions_total",
    "Presence state transitions",
    ["direction"],
    registry=REGISTRY,
)

presence_persist_failures_total = Counter(
    "presence_persist_failures_total",
    "Durable presence writes that failed and were tolerated",
    registry=REGISTRY,
)

websocket_messages_received_total = Counter(
    "websocket_messages_received_total",
    "Total number of WebSocket messages received from clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_messages_sent_total = Counter(
    "websocket_messages_sent_total",
    "Total number of WebSocket messages sent to clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_send_failures_total = Counter(
    "websocket_send_failures_total",
    "Per-recipient send failures",
    ["reason"],
    registry=REGISTRY,
)

websocket_connection_duration_seconds = Histogram(
    "websocket_connection_duration_seconds",
    "Duration of WebSocket connections in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
    registry=REGISTRY,
)

websocket_broadcast_recipients = Histogram(
    "websocket_broadcast_recipients",
    "Number of recipient connections per fan-out",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)

chat_messages_persisted_total = Counter(
    "chat_messages_persisted_total",
    "Chat messages written to durable storage",
    ["source"],
    registry=REGISTRY,
)

application_info = Gauge(
    "application_info",
    "Application information",
    ["version", "service", "environment"],
    registry=REGISTRY,
)
