"""Realtime primitives: connection registry, subscription index, and fan-out.

These classes hold in-memory state for a single process. They are
composed into a ``RealtimeHub`` (see ``chat_service.features.realtime.hub``)
that the application owns and stores on ``app.state``.
"""

from __future__ import annotations

from .exceptions import (
    AlreadyIdentified,
    ConnectionLimitReached,
    DurablePersistenceFailure,
    IdentityRequired,
    MalformedEnvelope,
    NotAMember,
    RealtimeError,
    SubscriptionLimitReached,
    TransportSendFailure,
    UnknownConnection,
    UnknownMessage,
    UnknownUser,
)
from .fanout import FanoutEngine
from .protocols import ConversationDirectory, MembershipChecker, PresenceStore, Transport
from .registry import Connection, ConnectionRegistry, RemovedConnection, UserPresenceEntry
from .subscriptions import SubscriptionIndex

__all__ = [
    "AlreadyIdentified",
    "Connection",
    "ConnectionLimitReached",
    "ConnectionRegistry",
    "ConversationDirectory",
    "DurablePersistenceFailure",
    "FanoutEngine",
    "IdentityRequired",
    "MalformedEnvelope",
    "MembershipChecker",
    "NotAMember",
    "PresenceStore",
    "RealtimeError",
    "RemovedConnection",
    "SubscriptionIndex",
    "SubscriptionLimitReached",
    "Transport",
    "TransportSendFailure",
    "UnknownConnection",
    "UnknownMessage",
    "UnknownUser",
    "UserPresenceEntry",
]
