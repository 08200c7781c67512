"""Presence tracking on top of the connection registry.

A user is ONLINE while at least one of their connections is identified and
OFFLINE otherwise. Transitions fire only on the first identify and the last
removal; extra tabs and devices never re-announce. The registry is the
source of truth; the ``is_online``/``last_seen`` columns are a best-effort
mirror.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING

from chat_service.features.realtime.schemas import UserOfflineEnvelope, UserOnlineEnvelope
from chat_service.infra.metrics.prometheus import (
    presence_online_users,
    presence_persist_failures_total,
    presence_transitions_total,
)
from chat_service.infra.realtime.exceptions import DurablePersistenceFailure

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from chat_service.core.settings import PresenceScope
    from chat_service.infra.realtime import (
        ConnectionRegistry,
        ConversationDirectory,
        FanoutEngine,
        PresenceStore,
        RemovedConnection,
    )
    from chat_service.features.realtime.schemas import ServerEnvelope

logger = logging.getLogger(__name__)


@dataclass
class _UserWriteSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class PresenceTracker:
    """Turns registry edge transitions into presence events and durable writes.

    Args:
        registry: Live connection registry
        fanout: Engine used to announce transitions
        store: Durable mirror of the online flag
        directory: Conversation lookup for the contact-scoped audience
        scope: ``"conversations"`` announces to subscribers of the user's
            conversations; ``"global"`` announces to every connection
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        fanout: FanoutEngine,
        store: PresenceStore,
        directory: ConversationDirectory,
        *,
        scope: PresenceScope = "conversations",
    ) -> None:
        self._registry = registry
        self._fanout = fanout
        self._store = store
        self._directory = directory
        self._scope = scope
        self._user_locks: dict[int, _UserWriteSlot] = {}
        self._announced_online: set[int] = set()

    @property
    def scope(self) -> PresenceScope:
        return self._scope

    # ──────────────────────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────────────────────

    async def identify(self, connection_id: str, user_id: int) -> bool:
        """Identify a connection and announce the user if they just came online.

        Returns:
            True if this was the user's first live connection.

        Raises:
            UnknownConnection: If the connection is not registered
            AlreadyIdentified: If the connection belongs to another user
        """
        first = self._registry.identify(connection_id, user_id)
        if not first:
            return False

        presence_transitions_total.labels(direction="online").inc()
        presence_online_users.set(self._registry.user_count)
        logger.info("User online", extra={"user_id": user_id, "connection_id": connection_id})

        await self._settle(user_id)
        return True

    async def release(self, removed: RemovedConnection) -> bool:
        """Handle a connection the registry already removed.

        Returns:
            True if the user went offline.
        """
        user_id = removed.user_id
        if user_id is None or not removed.was_last_for_user:
            return False

        presence_transitions_total.labels(direction="offline").inc()
        presence_online_users.set(self._registry.user_count)
        logger.info(
            "User offline",
            extra={"user_id": user_id, "connection_id": removed.connection_id},
        )

        await self._settle(user_id, fallback_conversations=removed.subscribed_conversations)
        return True

    # ──────────────────────────────────────────────────────────────
    # Queries (never read durable storage)
    # ──────────────────────────────────────────────────────────────

    def is_online(self, user_id: int) -> bool:
        return self._registry.has_user(user_id)

    def online_user_ids(self) -> list[int]:
        return self._registry.user_ids()

    @property
    def online_count(self) -> int:
        return self._registry.user_count

    # ──────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _user_slot(self, user_id: int) -> AsyncIterator[None]:
        slot = self._user_locks.get(user_id)
        if slot is None:
            slot = self._user_locks[user_id] = _UserWriteSlot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                del self._user_locks[user_id]

    async def _settle(self, user_id: int, *, fallback_conversations: Iterable[str] = ()) -> None:
        # One settle per user at a time, always against the registry state
        # current under the lock. Observers hear a state only once.
        async with self._user_slot(user_id):
            is_online = self._registry.has_user(user_id)
            await self._write_durable_state(user_id, is_online)
            if is_online == (user_id in self._announced_online):
                logger.debug(
                    "Presence already announced",
                    extra={"user_id": user_id, "is_online": is_online},
                )
                return
            if is_online:
                self._announced_online.add(user_id)
                envelope: ServerEnvelope = UserOnlineEnvelope(
                    user_id=user_id, online_count=self._registry.user_count,
                )
            else:
                self._announced_online.discard(user_id)
                envelope = UserOfflineEnvelope(user_id=user_id, online_count=self._registry.user_count)
            await self._announce(user_id, envelope, fallback_conversations=fallback_conversations)

    async def _write_durable_state(self, user_id: int, is_online: bool) -> None:
        try:
            await self._store.set_user_online_status(user_id, is_online, datetime.now(UTC))
        except DurablePersistenceFailure as exc:
            presence_persist_failures_total.inc()
            logger.warning(
                "Presence write failed, keeping in-memory state",
                extra={"user_id": user_id, "is_online": is_online, "error": exc.message},
            )

    async def _announce(
        self,
        user_id: int,
        envelope: ServerEnvelope,
        *,
        fallback_conversations: Iterable[str] = (),
    ) -> int:
        if self._scope == "global":
            return await self._fanout.broadcast_all(envelope, exclude_user=user_id)

        try:
            conversation_ids: Iterable[str] = await self._directory.list_conversations_for(user_id)
        except DurablePersistenceFailure as exc:
            logger.warning(
                "Conversation lookup failed, announcing to last known subscriptions",
                extra={"user_id": user_id, "error": exc.message},
            )
            conversation_ids = fallback_conversations
        return await self._fanout.deliver_to_conversations(conversation_ids, envelope, exclude_user=user_id)


__all__ = ["PresenceTracker"]
