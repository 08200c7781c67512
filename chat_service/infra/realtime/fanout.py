"""Message fan-out: resolve targets to live connections and push envelopes.

The engine routes envelopes without interpreting them. Callers persist and
validate before fanning out. Each envelope is serialized once per call and
the same text is sent to every recipient.

Per-recipient failures are isolated: a transport that raises or times out
is logged, counted as a non-delivery, and never aborts the batch. A
transport that falls too far behind is scheduled for closing, and the
normal close path then removes it from the registry.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from chat_service.infra.metrics.prometheus import (
    websocket_broadcast_recipients,
    websocket_messages_sent_total,
    websocket_send_failures_total,
)
from chat_service.infra.realtime.exceptions import TransportSendFailure

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from pydantic import BaseModel

    from chat_service.infra.realtime.registry import Connection, ConnectionRegistry
    from chat_service.infra.realtime.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)

# WebSocket close code for "try again later", used for slow consumers.
SLOW_CONSUMER_CLOSE_CODE = 1013


class FanoutEngine:
    """Delivers serialized envelopes to conversations, users, or everyone.

    Example:
        delivered = await engine.deliver_to_conversation("c-1", envelope)
        delivered = await engine.deliver_to_user(42, envelope)
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        subscriptions: SubscriptionIndex,
        *,
        send_timeout: float = 5.0,
        max_pending_sends: int = 64,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Live connection registry
            subscriptions: Conversation subscription index
            send_timeout: Seconds a single send may take before the recipient
                is treated as failed (0 disables the timeout)
            max_pending_sends: Sends that may queue on one connection before
                it is considered a slow consumer and closed
        """
        self._registry = registry
        self._subscriptions = subscriptions
        self._send_timeout = send_timeout
        self._max_pending_sends = max_pending_sends
        self._close_tasks: set[asyncio.Task[None]] = set()

    # ──────────────────────────────────────────────────────────────
    # Targets
    # ──────────────────────────────────────────────────────────────

    async def deliver_to_conversation(
        self,
        conversation_id: str,
        envelope: BaseModel,
        *,
        include_users: Iterable[int] = (),
        exclude_connections: Collection[str] = (),
        exclude_user: int | None = None,
    ) -> int:
        """Deliver to every subscriber of a conversation.

        Args:
            conversation_id: Conversation whose subscribers receive the envelope
            envelope: Envelope to send
            include_users: Users whose connections also receive it even when
                not subscribed (direct-message recipients)
            exclude_connections: Connections to skip (usually the originator)
            exclude_user: User whose connections are skipped entirely

        Returns:
            Number of connections the envelope was sent to successfully.
        """
        targets = list(self._subscriptions.subscribers_of(conversation_id))
        for user_id in include_users:
            targets.extend(c.connection_id for c in self._registry.living_connections_of(user_id))
        return await self._deliver(
            targets,
            envelope,
            exclude_connections=exclude_connections,
            exclude_user=exclude_user,
        )

    async def deliver_to_conversations(
        self,
        conversation_ids: Iterable[str],
        envelope: BaseModel,
        *,
        exclude_user: int | None = None,
    ) -> int:
        """Deliver once to every connection subscribed to any of the conversations."""
        targets: list[str] = []
        for conversation_id in conversation_ids:
            targets.extend(self._subscriptions.subscribers_of(conversation_id))
        return await self._deliver(targets, envelope, exclude_user=exclude_user)

    async def deliver_to_user(
        self,
        user_id: int,
        envelope: BaseModel,
        *,
        exclude_connections: Collection[str] = (),
    ) -> int:
        """Deliver to every live connection (all tabs and devices) of a user."""
        targets = [c.connection_id for c in self._registry.living_connections_of(user_id)]
        return await self._deliver(targets, envelope, exclude_connections=exclude_connections)

    async def broadcast_all(
        self,
        envelope: BaseModel,
        *,
        exclude_user: int | None = None,
    ) -> int:
        """Deliver to every live connection."""
        targets = [c.connection_id for c in self._registry.connections()]
        return await self._deliver(targets, envelope, exclude_user=exclude_user)

    async def send_to_connection(self, connection_id: str, envelope: BaseModel) -> bool:
        """Send to a single connection. Returns False if it is gone or the send failed."""
        return await self._deliver([connection_id], envelope, observe=False) == 1

    async def aclose(self) -> None:
        """Wait for scheduled slow-consumer closes to finish."""
        if self._close_tasks:
            await asyncio.gather(*self._close_tasks, return_exceptions=True)

    # ──────────────────────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────────────────────

    async def _deliver(
        self,
        connection_ids: Iterable[str],
        envelope: BaseModel,
        *,
        exclude_connections: Collection[str] = (),
        exclude_user: int | None = None,
        observe: bool = True,
    ) -> int:
        recipients: list[Connection] = []
        seen: set[str] = set()
        for connection_id in connection_ids:
            if connection_id in seen or connection_id in exclude_connections:
                continue
            seen.add(connection_id)
            connection = self._registry.get(connection_id)
            # Skip connections that closed since the target snapshot was taken.
            if connection is None:
                continue
            if exclude_user is not None and connection.user_id == exclude_user:
                continue
            recipients.append(connection)

        if not recipients:
            return 0

        message_type = str(getattr(envelope, "type", "unknown"))
        payload = envelope.model_dump_json()
        results = await asyncio.gather(
            *(self._send(connection, payload, message_type) for connection in recipients)
        )
        delivered = sum(results)

        if observe:
            websocket_broadcast_recipients.observe(len(recipients))
        logger.debug(
            "Envelope fanned out",
            extra={
                "message_type": message_type,
                "recipients": len(recipients),
                "delivered": delivered,
            },
        )
        return delivered

    async def _send(self, connection: Connection, payload: str, message_type: str) -> bool:
        if connection.closing:
            return False

        if connection.pending_sends >= self._max_pending_sends:
            websocket_send_failures_total.labels(reason="overflow").inc()
            logger.warning(
                "Send queue overflow, closing slow consumer",
                extra={
                    "connection_id": connection.connection_id,
                    "user_id": connection.user_id,
                    "pending_sends": connection.pending_sends,
                },
            )
            self._schedule_close(connection, "Send queue overflow")
            return False

        connection.pending_sends += 1
        try:
            async with connection.send_lock:
                # The connection may have been removed while waiting for the lock.
                if connection.closing or self._registry.get(connection.connection_id) is not connection:
                    return False
                if self._send_timeout > 0:
                    await asyncio.wait_for(
                        connection.transport.send_text(payload),
                        timeout=self._send_timeout,
                    )
                else:
                    await connection.transport.send_text(payload)
        except TimeoutError:
            websocket_send_failures_total.labels(reason="timeout").inc()
            logger.warning(
                "Send timed out, closing slow consumer",
                extra={
                    "connection_id": connection.connection_id,
                    "user_id": connection.user_id,
                    "timeout": self._send_timeout,
                },
            )
            self._schedule_close(connection, "Send timeout")
            return False
        except Exception as exc:
            websocket_send_failures_total.labels(reason="error").inc()
            failure = TransportSendFailure(connection.connection_id, repr(exc))
            logger.warning(
                str(failure),
                extra={
                    "connection_id": connection.connection_id,
                    "user_id": connection.user_id,
                    "message_type": message_type,
                },
            )
            return False
        finally:
            connection.pending_sends -= 1

        websocket_messages_sent_total.labels(message_type=message_type).inc()
        return True

    def _schedule_close(self, connection: Connection, reason: str) -> None:
        if connection.closing:
            return
        connection.closing = True
        task = asyncio.create_task(self._close_transport(connection, reason))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    async def _close_transport(self, connection: Connection, reason: str) -> None:
        with contextlib.suppress(Exception):
            await connection.transport.close(code=SLOW_CONSUMER_CLOSE_CODE, reason=reason)


__all__ = ["SLOW_CONSUMER_CLOSE_CODE", "FanoutEngine"]
