"""RealtimeHub: the single owner of connection, presence and subscription state.

One hub is built per application in the ``realtime`` lifespan hook and kept
on ``app.state.realtime_hub``. Tests construct their own. Nothing here is a
module-level singleton.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any
import uuid

from chat_service.features.realtime.presence import PresenceTracker
from chat_service.infra.metrics.prometheus import (
    presence_online_users,
    websocket_connection_duration_seconds,
    websocket_connections_total,
)
from chat_service.infra.realtime import (
    ConnectionLimitReached,
    ConnectionRegistry,
    FanoutEngine,
    SubscriptionIndex,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from chat_service.core.settings import RealtimeSettings
    from chat_service.features.chat.gateway import ChatGateway
    from chat_service.infra.realtime import Connection, RemovedConnection, Transport

logger = logging.getLogger(__name__)

# WebSocket close code for "going away", sent to every client on shutdown.
SHUTDOWN_CLOSE_CODE = 1001


class RealtimeHub:
    """Composes the registry, subscription index, fan-out engine and presence tracker.

    Example:
        hub = RealtimeHub(gateway, get_realtime_settings())
        connection = hub.admit(websocket)
        await hub.identify(connection.connection_id, user_id)
        await hub.auto_subscribe(connection.connection_id)
        ...
        await hub.disconnect(connection.connection_id)
    """

    def __init__(self, gateway: ChatGateway, settings: RealtimeSettings) -> None:
        self.gateway = gateway
        self.settings = settings
        self.registry = ConnectionRegistry()
        self.subscriptions = SubscriptionIndex(
            self.registry,
            gateway,
            max_per_connection=settings.max_subscriptions_per_connection,
        )
        self.fanout = FanoutEngine(
            self.registry,
            self.subscriptions,
            send_timeout=settings.send_timeout,
            max_pending_sends=settings.max_pending_sends,
        )
        self.presence = PresenceTracker(
            self.registry,
            self.fanout,
            gateway,
            gateway,
            scope=settings.presence_scope,
        )
        self._started_at = time.time()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._started_at = time.time()
        logger.info(
            "Realtime hub started",
            extra={
                "presence_scope": self.settings.presence_scope,
                "max_connections": self.settings.max_connections,
            },
        )

    async def stop(self) -> None:
        """Close every transport with 1001 and run the normal disconnect path for each."""
        self._running = False
        connections = self.registry.connections()
        for connection in connections:
            connection.closing = True
            with contextlib.suppress(Exception):
                await connection.transport.close(code=SHUTDOWN_CLOSE_CODE, reason="Server shutting down")

        await asyncio.gather(
            *(self.disconnect(connection.connection_id) for connection in connections),
            return_exceptions=True,
        )
        await self.fanout.aclose()
        logger.info("Realtime hub stopped", extra={"closed_connections": len(connections)})

    # ──────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ──────────────────────────────────────────────────────────────

    def at_capacity(self) -> bool:
        return self.registry.connection_count >= self.settings.max_connections

    def admit(self, transport: Transport) -> Connection:
        """Register a new, still anonymous connection.

        Raises:
            ConnectionLimitReached: If the process is at ``max_connections``
        """
        if self.at_capacity():
            raise ConnectionLimitReached(
                "Server connection limit reached",
                details={"limit": self.settings.max_connections},
            )

        connection = None
        while connection is None:
            connection = self.registry.admit(uuid.uuid4().hex, transport)

        websocket_connections_total.set(self.registry.connection_count)
        logger.debug("Connection admitted", extra={"connection_id": connection.connection_id})
        return connection

    async def identify(self, connection_id: str, user_id: int) -> bool:
        """Attach a user to a connection, announcing them if they just came online.

        Raises:
            ConnectionLimitReached: If the user already has the maximum live connections
            AlreadyIdentified: If the connection belongs to another user
            UnknownConnection: If the connection is not registered
        """
        connection = self.registry.get(connection_id)
        already_this_user = connection is not None and connection.user_id == user_id
        if not already_this_user:
            limit = self.settings.max_connections_per_user
            if self.registry.connection_count_of(user_id) >= limit:
                raise ConnectionLimitReached(
                    "Per-user connection limit reached",
                    details={"user_id": user_id, "limit": limit},
                )
        return await self.presence.identify(connection_id, user_id)

    async def auto_subscribe(self, connection_id: str) -> list[str]:
        """Subscribe an identified connection to every conversation of its user."""
        connection = self.registry.get(connection_id)
        if connection is None or connection.user_id is None:
            return []

        conversation_ids = await self.gateway.list_conversations_for(connection.user_id)
        added = self.subscriptions.subscribe_verified(connection_id, conversation_ids)
        logger.debug(
            "Auto-subscribed connection",
            extra={"connection_id": connection_id, "conversations": len(added)},
        )
        return added

    async def subscribe(self, connection_id: str, conversation_id: str) -> bool:
        return await self.subscriptions.subscribe(connection_id, conversation_id)

    def unsubscribe(self, connection_id: str, conversation_id: str) -> bool:
        return self.subscriptions.unsubscribe(connection_id, conversation_id)

    async def disconnect(self, connection_id: str) -> RemovedConnection | None:
        """Remove a connection everywhere, then settle presence.

        In-memory cleanup happens synchronously before any await, so no
        fan-out started afterwards can target the connection. Safe to call
        more than once.
        """
        removed = self.registry.remove(connection_id)
        if removed is None:
            return None
        self.subscriptions.purge(removed)

        websocket_connections_total.set(self.registry.connection_count)
        presence_online_users.set(self.registry.user_count)
        websocket_connection_duration_seconds.observe(max(time.time() - removed.established_at, 0.0))
        logger.debug(
            "Connection removed",
            extra={"connection_id": connection_id, "user_id": removed.user_id},
        )

        await self.presence.release(removed)
        return removed

    async def send(self, connection_id: str, envelope: BaseModel) -> bool:
        """Send one envelope to one connection through the fan-out path."""
        return await self.fanout.send_to_connection(connection_id, envelope)

    # ──────────────────────────────────────────────────────────────
    # Introspection
    # ──────────────────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        return {
            "connections": self.registry.connection_count,
            "online_users": self.registry.user_count,
            "subscribed_conversations": self.subscriptions.conversation_count,
            "presence_scope": self.settings.presence_scope,
            "uptime_seconds": round(time.time() - self._started_at, 3),
        }


__all__ = ["SHUTDOWN_CLOSE_CODE", "RealtimeHub"]
