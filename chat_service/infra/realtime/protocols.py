"""Protocols consumed by the realtime layer.

The realtime layer never talks to the database or the network directly.
It depends on these structural interfaces so tests can hand in simple
doubles and the application can hand in the SQL gateway and a WebSocket.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime


@runtime_checkable
class Transport(Protocol):
    """Outbound side of a persistent client connection.

    Starlette's ``WebSocket`` satisfies this protocol as-is.
    """

    async def send_text(self, data: str) -> None:
        """Send one serialized envelope."""
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        """Close the underlying connection."""
        ...


@runtime_checkable
class MembershipChecker(Protocol):
    """Answers conversation membership questions."""

    async def is_member(self, conversation_id: str, user_id: int) -> bool:
        """Return True when the user belongs to the conversation."""
        ...


@runtime_checkable
class ConversationDirectory(Protocol):
    """Lists the conversations a user belongs to."""

    async def list_conversations_for(self, user_id: int) -> list[str]:
        """Return the ids of every conversation the user is a member of."""
        ...


@runtime_checkable
class PresenceStore(Protocol):
    """Durable online/offline flag storage."""

    async def set_user_online_status(
        self,
        user_id: int,
        is_online: bool,
        last_seen: datetime,
    ) -> None:
        """Persist the user's online flag and last-seen time."""
        ...


__all__ = ["ConversationDirectory", "MembershipChecker", "PresenceStore", "Transport"]
