"""Conversation subscriptions per connection, plus the reverse index used by fan-out."""

from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import TYPE_CHECKING

from chat_service.infra.realtime.exceptions import (
    NotAMember,
    SubscriptionLimitReached,
    UnknownConnection,
)

if TYPE_CHECKING:
    from chat_service.infra.realtime.protocols import MembershipChecker
    from chat_service.infra.realtime.registry import (
        Connection,
        ConnectionRegistry,
        RemovedConnection,
    )

logger = logging.getLogger(__name__)


class SubscriptionIndex:
    """Tracks which connections listen to which conversations.

    A connection's own ``subscribed_conversations`` set and the reverse
    index (conversation id -> connection ids) always change together.
    Membership is asked of the gateway on every ``subscribe`` call and is
    never cached.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        membership: MembershipChecker,
        *,
        max_per_connection: int = 200,
    ) -> None:
        self._registry = registry
        self._membership = membership
        self._max_per_connection = max_per_connection
        # conversation_id -> set of connection_ids
        self._subscribers: dict[str, set[str]] = {}

    async def subscribe(self, connection_id: str, conversation_id: str) -> bool:
        """Subscribe a connection to a conversation after a membership check.

        Args:
            connection_id: Subscribing connection
            conversation_id: Conversation to listen to

        Returns:
            True if the subscription was added, False if it already existed
            or the connection closed while membership was being checked.

        Raises:
            UnknownConnection: If the connection is not registered
            NotAMember: If the connection is anonymous or its user is not a member
            SubscriptionLimitReached: If the connection is at its limit
        """
        connection = self._registry.get(connection_id)
        if connection is None:
            raise UnknownConnection(connection_id)
        user_id = connection.user_id
        if user_id is None:
            raise NotAMember(conversation_id, None)

        if not await self._membership.is_member(conversation_id, user_id):
            logger.info(
                "Subscription rejected: not a member",
                extra={
                    "connection_id": connection_id,
                    "conversation_id": conversation_id,
                    "user_id": user_id,
                },
            )
            raise NotAMember(conversation_id, user_id)

        # The connection may have closed while the gateway was queried.
        if self._registry.get(connection_id) is not connection:
            logger.debug(
                "Connection closed during subscribe",
                extra={"connection_id": connection_id, "conversation_id": conversation_id},
            )
            return False

        return self._add(connection, conversation_id)

    def subscribe_verified(
        self,
        connection_id: str,
        conversation_ids: Iterable[str],
    ) -> list[str]:
        """Subscribe to conversations whose membership the caller already verified.

        Used right after identification with the user's own conversation list.
        Stops silently at the per-connection limit.

        Returns:
            Conversation ids newly subscribed.
        """
        connection = self._registry.get(connection_id)
        if connection is None:
            return []

        added: list[str] = []
        for conversation_id in conversation_ids:
            try:
                if self._add(connection, conversation_id):
                    added.append(conversation_id)
            except SubscriptionLimitReached:
                logger.warning(
                    "Auto-subscribe truncated at subscription limit",
                    extra={"connection_id": connection_id, "limit": self._max_per_connection},
                )
                break
        return added

    def unsubscribe(self, connection_id: str, conversation_id: str) -> bool:
        """Remove a subscription. Idempotent.

        Returns:
            True if a subscription was removed.
        """
        connection = self._registry.get(connection_id)
        if connection is None or conversation_id not in connection.subscribed_conversations:
            return False

        connection.subscribed_conversations.discard(conversation_id)
        self._discard(conversation_id, connection_id)
        return True

    def purge(self, removed: RemovedConnection) -> None:
        """Drop every reverse-index entry of a removed connection."""
        for conversation_id in removed.subscribed_conversations:
            self._discard(conversation_id, removed.connection_id)

    def subscribers_of(self, conversation_id: str) -> frozenset[str]:
        """Snapshot of the connection ids subscribed to a conversation."""
        return frozenset(self._subscribers.get(conversation_id, ()))

    def subscriptions_of(self, connection_id: str) -> frozenset[str]:
        connection = self._registry.get(connection_id)
        if connection is None:
            return frozenset()
        return frozenset(connection.subscribed_conversations)

    @property
    def conversation_count(self) -> int:
        return len(self._subscribers)

    def _add(self, connection: Connection, conversation_id: str) -> bool:
        if conversation_id in connection.subscribed_conversations:
            return False
        if len(connection.subscribed_conversations) >= self._max_per_connection:
            raise SubscriptionLimitReached(
                "Subscription limit reached",
                details={
                    "connection_id": connection.connection_id,
                    "limit": self._max_per_connection,
                },
            )

        connection.subscribed_conversations.add(conversation_id)
        self._subscribers.setdefault(conversation_id, set()).add(connection.connection_id)
        return True

    def _discard(self, conversation_id: str, connection_id: str) -> None:
        subscribers = self._subscribers.get(conversation_id)
        if subscribers is None:
            return
        subscribers.discard(connection_id)
        if not subscribers:
            del self._subscribers[conversation_id]


__all__ = ["SubscriptionIndex"]
