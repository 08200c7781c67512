"""Realtime layer exceptions.

Each error carries a stable wire ``code`` so session handlers can turn it
into an ``error`` envelope for the originating connection without
inspecting the exception type.
"""

from __future__ import annotations

from typing import Any


class RealtimeError(Exception):
    """Base exception for presence, subscription and fan-out operations."""

    code = "realtime_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize realtime error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class MalformedEnvelope(RealtimeError):
    """Inbound payload failed to parse or validate."""

    code = "malformed_envelope"


class NotAMember(RealtimeError):
    """User is not a member of the conversation it tried to access."""

    code = "not_a_member"

    def __init__(self, conversation_id: str, user_id: int | None):
        self.conversation_id = conversation_id
        self.user_id = user_id
        super().__init__(
            "Not a member of this conversation",
            details={"conversation_id": conversation_id, "user_id": user_id},
        )


class IdentityRequired(RealtimeError):
    """Operation needs an identified connection."""

    code = "identity_required"


class DurablePersistenceFailure(RealtimeError):
    """The persistence gateway could not complete a write or read."""

    code = "persistence_failure"


class TransportSendFailure(RealtimeError):
    """A single recipient's transport rejected a send."""

    code = "send_failed"

    def __init__(self, connection_id: str, reason: str):
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(
            "Transport send failed",
            details={"connection_id": connection_id, "reason": reason},
        )


class AlreadyIdentified(RealtimeError):
    """A connection was identified a second time with a different user."""

    code = "already_identified"

    def __init__(self, connection_id: str, current_user_id: int, requested_user_id: int):
        self.connection_id = connection_id
        self.current_user_id = current_user_id
        self.requested_user_id = requested_user_id
        super().__init__(
            "Connection already identified",
            details={
                "connection_id": connection_id,
                "current_user_id": current_user_id,
                "requested_user_id": requested_user_id,
            },
        )


class UnknownConnection(RealtimeError):
    """Connection id is not registered (never admitted or already removed)."""

    code = "unknown_connection"

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__("Unknown connection", details={"connection_id": connection_id})


class UnknownUser(RealtimeError):
    """Referenced user does not exist."""

    code = "unknown_user"

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Unknown user", details={"user_id": user_id})


class UnknownMessage(RealtimeError):
    """Referenced message does not exist."""

    code = "unknown_message"

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__("Unknown message", details={"message_id": message_id})


class SubscriptionLimitReached(RealtimeError):
    """Connection already holds the maximum number of subscriptions."""

    code = "subscription_limit"


class ConnectionLimitReached(RealtimeError):
    """Server-wide or per-user connection limit reached."""

    code = "connection_limit"


__all__ = [
    "AlreadyIdentified",
    "ConnectionLimitReached",
    "DurablePersistenceFailure",
    "IdentityRequired",
    "MalformedEnvelope",
    "NotAMember",
    "RealtimeError",
    "SubscriptionLimitReached",
    "TransportSendFailure",
    "UnknownConnection",
    "UnknownMessage",
    "UnknownUser",
]
