"""In-memory registry of live connections and the users behind them.

The registry keeps two structures: connection id -> ``Connection`` and
user id -> ``UserPresenceEntry``. Every mutation updates both in one
synchronous step, so no coroutine can observe them out of sync.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING

from chat_service.infra.realtime.exceptions import AlreadyIdentified, UnknownConnection

if TYPE_CHECKING:
    from chat_service.infra.realtime.protocols import Transport

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """A live transport connection and its per-connection state."""

    connection_id: str
    transport: Transport
    user_id: int | None = None
    established_at: float = field(default_factory=time.time)
    subscribed_conversations: set[str] = field(default_factory=set)
    # Serializes sends so one connection sees envelopes in invocation order.
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    pending_sends: int = 0
    closing: bool = False

    @property
    def is_identified(self) -> bool:
        return self.user_id is not None


@dataclass
class UserPresenceEntry:
    """Live connections of one user. Exists only while the set is non-empty."""

    user_id: int
    connections: set[str] = field(default_factory=set)
    first_connected_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class RemovedConnection:
    """Final state of a connection handed back by ``ConnectionRegistry.remove``."""

    connection_id: str
    user_id: int | None
    subscribed_conversations: frozenset[str]
    established_at: float
    was_last_for_user: bool


class ConnectionRegistry:
    """Tracks live connections per user.

    Example:
        registry = ConnectionRegistry()
        registry.admit("c1", websocket)
        first = registry.identify("c1", 42)   # True: user 42 just came online
        removed = registry.remove("c1")       # removed.was_last_for_user is True
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._users: dict[int, UserPresenceEntry] = {}

    # ──────────────────────────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────────────────────────

    def admit(self, connection_id: str, transport: Transport) -> Connection | None:
        """Register an unauthenticated connection.

        A duplicate id is a programming error: it is logged and ignored.

        Returns:
            The new connection, or None when the id was already registered.
        """
        if connection_id in self._connections:
            logger.error(
                "Duplicate connection id ignored",
                extra={"connection_id": connection_id},
            )
            return None

        connection = Connection(connection_id=connection_id, transport=transport)
        self._connections[connection_id] = connection
        return connection

    def identify(self, connection_id: str, user_id: int) -> bool:
        """Attach a user identity to an admitted connection.

        Args:
            connection_id: Admitted connection
            user_id: Resolved user identity

        Returns:
            True when this is the user's first live connection.

        Raises:
            UnknownConnection: If the connection is not registered
            AlreadyIdentified: If the connection belongs to another user
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            raise UnknownConnection(connection_id)

        if connection.user_id is not None:
            if connection.user_id == user_id:
                return False
            raise AlreadyIdentified(connection_id, connection.user_id, user_id)

        connection.user_id = user_id
        entry = self._users.get(user_id)
        first = entry is None
        if entry is None:
            entry = UserPresenceEntry(user_id=user_id)
            self._users[user_id] = entry
        entry.connections.add(connection_id)
        return first

    def remove(self, connection_id: str) -> RemovedConnection | None:
        """Detach a connection from every structure that references it.

        Returns:
            The connection's final state, or None for an unknown id.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        was_last = False
        if connection.user_id is not None:
            entry = self._users.get(connection.user_id)
            if entry is not None:
                entry.connections.discard(connection_id)
                if not entry.connections:
                    del self._users[connection.user_id]
                    was_last = True

        subscriptions = frozenset(connection.subscribed_conversations)
        connection.subscribed_conversations.clear()
        connection.closing = True

        return RemovedConnection(
            connection_id=connection_id,
            user_id=connection.user_id,
            subscribed_conversations=subscriptions,
            established_at=connection.established_at,
            was_last_for_user=was_last,
        )

    # ──────────────────────────────────────────────────────────────
    # Queries (point-in-time snapshots)
    # ──────────────────────────────────────────────────────────────

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def living_connections_of(self, user_id: int) -> list[Connection]:
        """Snapshot of every live connection of a user (all devices/tabs)."""
        entry = self._users.get(user_id)
        if entry is None:
            return []
        return [
            self._connections[cid]
            for cid in sorted(entry.connections)
            if cid in self._connections
        ]

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def presence_entry(self, user_id: int) -> UserPresenceEntry | None:
        return self._users.get(user_id)

    def has_user(self, user_id: int) -> bool:
        return user_id in self._users

    def user_ids(self) -> list[int]:
        return sorted(self._users)

    def connection_count_of(self, user_id: int) -> int:
        entry = self._users.get(user_id)
        return len(entry.connections) if entry else 0

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def user_count(self) -> int:
        return len(self._users)


__all__ = ["Connection", "ConnectionRegistry", "RemovedConnection", "UserPresenceEntry"]
