"""Realtime wire protocol.

Every frame is a JSON object tagged by ``type``. Server envelopes carry a
``timestamp`` in epoch milliseconds. Ids are typed uniformly: user ids are
integers, conversation and message ids are strings.

Client -> Server:
    {"type": "connect"}
    {"type": "subscribe", "conversation_id": "..."}
    {"type": "unsubscribe", "conversation_id": "..."}
    {"type": "send_message", "conversation_id": "...", "content": "..."}
    {"type": "send_message", "receiver_id": 7, "content": "..."}
    {"type": "mark_as_read", "message_id": "..."}
    {"type": "typing", "conversation_id": "...", "is_typing": true}
    {"type": "history", "conversation_id": "...", "limit": 50, "before": "..."}

Server -> Client:
    connect, user_online, user_offline, new_message, message_delivered,
    message_read, user_typing, history, subscribed, unsubscribed, error
"""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from chat_service.features.chat.schemas import ConversationSummary, MessageRead
from chat_service.infra.realtime.exceptions import MalformedEnvelope, RealtimeError

MAX_CONTENT_LENGTH = 10000


def now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
# Client -> Server
# ──────────────────────────────────────────────────────────────


class _ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)


ConversationId = Annotated[str, Field(min_length=1, max_length=64)]


class ConnectRequest(_ClientMessage):
    type: Literal["connect"]


class SubscribeRequest(_ClientMessage):
    type: Literal["subscribe"]
    conversation_id: ConversationId


class UnsubscribeRequest(_ClientMessage):
    type: Literal["unsubscribe"]
    conversation_id: ConversationId


class SendMessageRequest(_ClientMessage):
    """Send to a conversation, or directly to a user.

    With ``receiver_id`` the direct conversation is created on demand.
    """

    type: Literal["send_message"]
    conversation_id: ConversationId | None = None
    receiver_id: int | None = Field(default=None, ge=1)
    content: str = Field(..., min_length=1, max_length=MAX_CONTENT_LENGTH)

    @model_validator(mode="after")
    def _exactly_one_target(self) -> SendMessageRequest:
        if (self.conversation_id is None) == (self.receiver_id is None):
            msg = "Exactly one of conversation_id or receiver_id is required"
            raise ValueError(msg)
        return self


class MarkAsReadRequest(_ClientMessage):
    type: Literal["mark_as_read"]
    message_id: str = Field(..., min_length=1, max_length=64)


class TypingRequest(_ClientMessage):
    type: Literal["typing"]
    conversation_id: ConversationId
    is_typing: bool = True


class HistoryRequest(_ClientMessage):
    type: Literal["history"]
    conversation_id: ConversationId
    limit: int | None = Field(default=None, ge=1)
    before: str | None = Field(default=None, min_length=1, max_length=64)


ClientMessage = Annotated[
    ConnectRequest
    | SubscribeRequest
    | UnsubscribeRequest
    | SendMessageRequest
    | MarkAsReadRequest
    | TypingRequest
    | HistoryRequest,
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse and validate one inbound frame.

    Raises:
        MalformedEnvelope: If the frame is not JSON or fails validation
    """
    try:
        return _client_message_adapter.validate_json(raw)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        if any(error["type"] == "json_invalid" for error in errors):
            raise MalformedEnvelope("Invalid JSON") from exc
        raise MalformedEnvelope(
            "Invalid message",
            details={
                "errors": [
                    {
                        "field": ".".join(str(part) for part in error["loc"]),
                        "message": error["msg"],
                        "type": error["type"],
                    }
                    for error in errors
                ]
            },
        ) from exc


# ──────────────────────────────────────────────────────────────
# Server -> Client
# ──────────────────────────────────────────────────────────────


class ServerEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")


class ConnectEnvelope(ServerEnvelope):
    type: Literal["connect"] = "connect"
    connection_id: str
    user_id: int | None
    online_user_ids: list[int] = Field(default_factory=list)


class UserOnlineEnvelope(ServerEnvelope):
    type: Literal["user_online"] = "user_online"
    user_id: int
    online_count: int


class UserOfflineEnvelope(ServerEnvelope):
    type: Literal["user_offline"] = "user_offline"
    user_id: int
    online_count: int


class NewMessageEnvelope(ServerEnvelope):
    type: Literal["new_message"] = "new_message"
    message: MessageRead


class MessageDeliveredEnvelope(ServerEnvelope):
    """Acknowledgement to the sender. ``delivered_count`` 0 means nobody was reachable."""

    type: Literal["message_delivered"] = "message_delivered"
    message: MessageRead
    delivered_count: int


class MessageReadEnvelope(ServerEnvelope):
    type: Literal["message_read"] = "message_read"
    message_id: str
    conversation_id: str
    reader_id: int


class UserTypingEnvelope(ServerEnvelope):
    type: Literal["user_typing"] = "user_typing"
    conversation_id: str
    user_id: int
    is_typing: bool


class HistoryEnvelope(ServerEnvelope):
    """Either a page of one conversation's messages or the post-connect backlog."""

    type: Literal["history"] = "history"
    conversation_id: str | None = None
    messages: list[MessageRead] = Field(default_factory=list)
    has_more: bool = False
    conversations: list[ConversationSummary] | None = None


class SubscribedEnvelope(ServerEnvelope):
    type: Literal["subscribed"] = "subscribed"
    conversation_id: str


class UnsubscribedEnvelope(ServerEnvelope):
    type: Literal["unsubscribed"] = "unsubscribed"
    conversation_id: str


class ErrorEnvelope(ServerEnvelope):
    type: Literal["error"] = "error"
    code: str
    message: str
    details: dict[str, Any] | None = None

    @classmethod
    def from_exception(cls, exc: RealtimeError) -> ErrorEnvelope:
        return cls(code=exc.code, message=exc.message, details=exc.details or None)


__all__ = [
    "ClientMessage",
    "ConnectEnvelope",
    "ConnectRequest",
    "ErrorEnvelope",
    "HistoryEnvelope",
    "HistoryRequest",
    "MarkAsReadRequest",
    "MessageDeliveredEnvelope",
    "MessageReadEnvelope",
    "NewMessageEnvelope",
    "SendMessageRequest",
    "ServerEnvelope",
    "SubscribeRequest",
    "SubscribedEnvelope",
    "TypingRequest",
    "UnsubscribeRequest",
    "UnsubscribedEnvelope",
    "UserOfflineEnvelope",
    "UserOnlineEnvelope",
    "UserTypingEnvelope",
    "now_ms",
    "parse_client_message",
]
