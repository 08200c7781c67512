"""Unit tests for RealtimeHub."""

from __future__ import annotations

import pytest

from chat_service.core.settings import RealtimeSettings
from chat_service.features.realtime.hub import SHUTDOWN_CLOSE_CODE, RealtimeHub
from chat_service.infra.realtime import ConnectionLimitReached
from tests.doubles import FakeGateway, FakeTransport, connect_user


class TestAdmission:
    """Connection limits."""

    async def test_server_limit(self, gateway: FakeGateway) -> None:
        hub = RealtimeHub(gateway, RealtimeSettings(max_connections=2))
        hub.admit(FakeTransport())
        hub.admit(FakeTransport())

        assert hub.at_capacity()
        with pytest.raises(ConnectionLimitReached):
            hub.admit(FakeTransport())

    async def test_per_user_limit(self, gateway: FakeGateway) -> None:
        hub = RealtimeHub(gateway, RealtimeSettings(max_connections_per_user=2))
        await connect_user(hub, 1)
        await connect_user(hub, 1)
        connection = hub.admit(FakeTransport())

        with pytest.raises(ConnectionLimitReached):
            await hub.identify(connection.connection_id, 1)

        assert hub.registry.connection_count_of(1) == 2
        assert hub.registry.get(connection.connection_id).user_id is None

    async def test_reidentify_at_limit_is_allowed(self, gateway: FakeGateway) -> None:
        hub = RealtimeHub(gateway, RealtimeSettings(max_connections_per_user=1))
        cid, _ = await connect_user(hub, 1)

        assert await hub.identify(cid, 1) is False

    async def test_connection_ids_are_unique(self, hub) -> None:
        ids = {hub.admit(FakeTransport()).connection_id for _ in range(50)}

        assert len(ids) == 50


class TestSubscriptions:
    async def test_auto_subscribe_uses_membership(self, hub, gateway: FakeGateway) -> None:
        gateway.add_conversation([1, 2], "a")
        gateway.add_conversation([1], "b")
        gateway.add_conversation([2], "c")

        cid, _ = await connect_user(hub, 1)

        assert hub.subscriptions.subscriptions_of(cid) == frozenset({"a", "b"})

    async def test_auto_subscribe_anonymous_is_noop(self, hub) -> None:
        cid, _ = await connect_user(hub, None)

        assert await hub.auto_subscribe(cid) == []

    async def test_disconnect_purges_subscriptions(self, hub, gateway: FakeGateway) -> None:
        gateway.add_conversation([1], "a")
        cid, _ = await connect_user(hub, 1)

        removed = await hub.disconnect(cid)

        assert removed.subscribed_conversations == frozenset({"a"})
        assert hub.subscriptions.subscribers_of("a") == frozenset()
        assert hub.subscriptions.conversation_count == 0


class TestLifecycle:
    async def test_stop_closes_everything_with_going_away(self, gateway: FakeGateway) -> None:
        gateway.add_conversation([1, 2], "a")
        hub = RealtimeHub(gateway, RealtimeSettings())
        await hub.start()
        transports = [(await connect_user(hub, user_id))[1] for user_id in (1, 2, 2)]

        await hub.stop()

        assert not hub.is_running
        assert all(t.close_code == SHUTDOWN_CLOSE_CODE for t in transports)
        assert hub.registry.connection_count == 0
        assert hub.presence.online_count == 0
        assert hub.subscriptions.conversation_count == 0

    async def test_stop_does_not_announce_to_closing_connections(self, gateway: FakeGateway) -> None:
        gateway.add_conversation([1, 2], "a")
        hub = RealtimeHub(gateway, RealtimeSettings())
        await hub.start()
        _, first = await connect_user(hub, 1)
        await connect_user(hub, 2)
        sent_before = len(first.sent)

        await hub.stop()

        assert len(first.sent) == sent_before

    async def test_stats(self, hub, gateway: FakeGateway) -> None:
        gateway.add_conversation([1, 2], "a")
        await connect_user(hub, 1)
        await connect_user(hub, 1)
        await connect_user(hub, None)

        stats = hub.stats()

        assert stats["connections"] == 3
        assert stats["online_users"] == 1
        assert stats["subscribed_conversations"] == 1
        assert stats["presence_scope"] == "conversations"
        assert stats["uptime_seconds"] >= 0
