"""Per-connection realtime session: setup, inbound dispatch, teardown.

Frames from one connection are handled strictly in arrival order. A
failing frame produces an ``error`` envelope for that connection only and
the loop keeps reading.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from starlette.websockets import WebSocketDisconnect

from chat_service.features.realtime.schemas import (
    ConnectEnvelope,
    ErrorEnvelope,
    HistoryEnvelope,
    MessageDeliveredEnvelope,
    SubscribedEnvelope,
    UnsubscribedEnvelope,
    parse_client_message,
)
from chat_service.infra.logging import clear_log_context, set_log_context
from chat_service.infra.metrics.prometheus import websocket_messages_received_total
from chat_service.infra.realtime.exceptions import (
    ConnectionLimitReached,
    DurablePersistenceFailure,
    IdentityRequired,
    MalformedEnvelope,
    RealtimeError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pydantic import BaseModel
    from starlette.types import Message

    from chat_service.features.chat.service import ChatService
    from chat_service.features.realtime.hub import RealtimeHub
    from chat_service.features.realtime.schemas import (
        ClientMessage,
        ConnectRequest,
        HistoryRequest,
        MarkAsReadRequest,
        SendMessageRequest,
        SubscribeRequest,
        TypingRequest,
        UnsubscribeRequest,
    )

logger = logging.getLogger(__name__)

# Close codes used during setup.
TRY_AGAIN_LATER = 1013


class SessionSocket(Protocol):
    """What a session needs from an accepted WebSocket."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...

    async def receive(self) -> Message: ...


class ChatSession:
    """Drives one accepted WebSocket from admission to disconnect."""

    def __init__(
        self,
        websocket: SessionSocket,
        hub: RealtimeHub,
        service: ChatService,
        *,
        user_id: int | None,
    ) -> None:
        self.websocket = websocket
        self.hub = hub
        self.service = service
        self.user_id = user_id
        self.connection_id: str | None = None
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "connect": self._on_connect,
            "subscribe": self._on_subscribe,
            "unsubscribe": self._on_unsubscribe,
            "send_message": self._on_send_message,
            "mark_as_read": self._on_mark_as_read,
            "typing": self._on_typing,
            "history": self._on_history,
        }

    async def run(self) -> None:
        """Admit, identify, greet, then read until the client goes away.

        ``RealtimeHub.disconnect`` always runs once the connection was admitted.
        """
        try:
            connection = self.hub.admit(self.websocket)
        except ConnectionLimitReached as exc:
            logger.warning("Connection refused", extra={"reason": exc.message})
            await self.websocket.close(code=TRY_AGAIN_LATER, reason=exc.message)
            return

        self.connection_id = connection.connection_id
        set_log_context(connection_id=self.connection_id, user_id=self.user_id)
        try:
            if self.user_id is not None:
                try:
                    await self.hub.identify(self.connection_id, self.user_id)
                except ConnectionLimitReached as exc:
                    logger.warning("Connection refused", extra={"reason": exc.message})
                    await self.websocket.close(code=TRY_AGAIN_LATER, reason=exc.message)
                    return
                await self._auto_subscribe()

            await self._on_connect(None)
            if self.user_id is not None:
                await self._send_backlog()

            logger.info("Realtime session started")
            await self._read_loop()
        except WebSocketDisconnect as exc:
            logger.debug("Client disconnected", extra={"code": exc.code})
        finally:
            await self.hub.disconnect(self.connection_id)
            logger.info("Realtime session ended")
            clear_log_context()

    # ──────────────────────────────────────────────────────────────
    # Inbound
    # ──────────────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        # Text and binary frames both carry JSON envelopes.
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            if self.connection_id not in self.hub.registry:
                # Closed as a slow consumer while the frame was in flight.
                break
            await self.handle_frame(raw)

    async def handle_frame(self, raw: str | bytes) -> None:
        """Validate and dispatch one inbound frame, reporting failures to the sender."""
        try:
            message = self._parse(raw)
            await self._handlers[message.type](message)
        except RealtimeError as exc:
            logger.info(
                "Realtime request rejected",
                extra={"code": exc.code, "error": exc.message},
            )
            await self.reply(ErrorEnvelope.from_exception(exc))
        except Exception:
            logger.exception("Error handling realtime message")
            await self.reply(
                ErrorEnvelope(code="internal_error", message="Internal error processing message")
            )

    def _parse(self, raw: str | bytes) -> ClientMessage:
        max_size = self.hub.settings.max_message_size
        size = len(raw) if isinstance(raw, bytes) else len(raw.encode("utf-8"))
        if size > max_size:
            websocket_messages_received_total.labels(message_type="invalid").inc()
            raise MalformedEnvelope("Message too large", details={"max_size": max_size})
        try:
            if isinstance(raw, bytes):
                try:
                    raw = raw.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise MalformedEnvelope("Binary frame is not valid UTF-8") from exc
            message = parse_client_message(raw)
        except MalformedEnvelope:
            websocket_messages_received_total.labels(message_type="invalid").inc()
            raise
        websocket_messages_received_total.labels(message_type=message.type).inc()
        return message

    async def reply(self, envelope: BaseModel) -> bool:
        if self.connection_id is None:
            return False
        return await self.hub.send(self.connection_id, envelope)

    def _require_user(self) -> int:
        if self.user_id is None:
            raise IdentityRequired("This operation requires an identified connection")
        return self.user_id

    # ──────────────────────────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────────────────────────

    async def _on_connect(self, _message: ConnectRequest | None) -> None:
        await self.reply(
            ConnectEnvelope(
                connection_id=self.connection_id,
                user_id=self.user_id,
                online_user_ids=self.hub.presence.online_user_ids(),
            )
        )

    async def _on_subscribe(self, message: SubscribeRequest) -> None:
        self._require_user()
        await self.hub.subscribe(self.connection_id, message.conversation_id)
        await self.reply(SubscribedEnvelope(conversation_id=message.conversation_id))

    async def _on_unsubscribe(self, message: UnsubscribeRequest) -> None:
        self.hub.unsubscribe(self.connection_id, message.conversation_id)
        await self.reply(UnsubscribedEnvelope(conversation_id=message.conversation_id))

    async def _on_send_message(self, message: SendMessageRequest) -> None:
        sender_id = self._require_user()
        stored, delivered = await self.service.send_message(
            sender_id,
            message.content,
            conversation_id=message.conversation_id,
            receiver_id=message.receiver_id,
            origin_connection_id=self.connection_id,
        )
        await self.reply(MessageDeliveredEnvelope(message=stored, delivered_count=delivered))

    async def _on_mark_as_read(self, message: MarkAsReadRequest) -> None:
        reader_id = self._require_user()
        await self.service.mark_as_read(message.message_id, reader_id)

    async def _on_typing(self, message: TypingRequest) -> None:
        user_id = self._require_user()
        await self.service.typing(self.connection_id, user_id, message.conversation_id, message.is_typing)

    async def _on_history(self, message: HistoryRequest) -> None:
        user_id = self._require_user()
        page = await self.service.history(
            user_id,
            message.conversation_id,
            limit=message.limit,
            before=message.before,
        )
        await self.reply(
            HistoryEnvelope(
                conversation_id=page.conversation_id,
                messages=page.messages,
                has_more=page.has_more,
            )
        )

    # ──────────────────────────────────────────────────────────────
    # Setup helpers
    # ──────────────────────────────────────────────────────────────

    async def _auto_subscribe(self) -> None:
        if not self.hub.settings.auto_subscribe:
            return
        try:
            await self.hub.auto_subscribe(self.connection_id)
        except DurablePersistenceFailure as exc:
            logger.warning("Auto-subscribe skipped", extra={"error": exc.message})
            await self.reply(ErrorEnvelope.from_exception(exc))

    async def _send_backlog(self) -> None:
        try:
            summaries = await self.service.conversation_summaries(self.user_id)
        except DurablePersistenceFailure as exc:
            logger.warning("Conversation backlog unavailable", extra={"error": exc.message})
            await self.reply(ErrorEnvelope.from_exception(exc))
            return
        await self.reply(HistoryEnvelope(conversations=summaries))


__all__ = ["ChatSession", "SessionSocket"]
