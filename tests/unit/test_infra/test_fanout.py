"""Unit tests for the fan-out engine."""

from __future__ import annotations

import asyncio
import json

import pytest

from chat_service.features.realtime.schemas import SubscribedEnvelope, UserTypingEnvelope
from chat_service.infra.realtime import ConnectionRegistry, FanoutEngine, SubscriptionIndex
from chat_service.infra.realtime.fanout import SLOW_CONSUMER_CLOSE_CODE
from tests.doubles import FakeGateway, FakeTransport


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def subscriptions(registry: ConnectionRegistry) -> SubscriptionIndex:
    gateway = FakeGateway()
    gateway.add_conversation([1, 2, 3], "room")
    return SubscriptionIndex(registry, gateway)


@pytest.fixture
def engine(registry: ConnectionRegistry, subscriptions: SubscriptionIndex) -> FanoutEngine:
    return FanoutEngine(registry, subscriptions, send_timeout=0.5, max_pending_sends=4)


def add(
    registry: ConnectionRegistry,
    subscriptions: SubscriptionIndex,
    cid: str,
    user_id: int,
    transport: FakeTransport | None = None,
    *,
    subscribe: bool = True,
) -> FakeTransport:
    transport = transport or FakeTransport()
    registry.admit(cid, transport)
    registry.identify(cid, user_id)
    if subscribe:
        subscriptions.subscribe_verified(cid, ["room"])
    return transport


def envelope() -> SubscribedEnvelope:
    return SubscribedEnvelope(conversation_id="room")


class TestDeliverToConversation:
    """Test conversation-targeted delivery."""

    async def test_all_subscribers_receive(self, engine, registry, subscriptions) -> None:
        transports = [add(registry, subscriptions, f"c{i}", i + 1) for i in range(3)]

        delivered = await engine.deliver_to_conversation("room", envelope())

        assert delivered == 3
        for transport in transports:
            assert transport.types == ["subscribed"]

    async def test_same_text_sent_to_every_recipient(self, engine, registry, subscriptions) -> None:
        transports = [add(registry, subscriptions, f"c{i}", i + 1) for i in range(3)]

        await engine.deliver_to_conversation("room", envelope())

        assert len({transport.sent[0] for transport in transports}) == 1

    async def test_no_subscribers_delivers_nothing(self, engine) -> None:
        assert await engine.deliver_to_conversation("empty", envelope()) == 0

    async def test_exclude_connection_skips_originator(self, engine, registry, subscriptions) -> None:
        origin = add(registry, subscriptions, "c1", 1)
        other_tab = add(registry, subscriptions, "c2", 1)
        peer = add(registry, subscriptions, "c3", 2)

        delivered = await engine.deliver_to_conversation("room", envelope(), exclude_connections=("c1",))

        assert delivered == 2
        assert origin.sent == []
        assert other_tab.types == ["subscribed"]
        assert peer.types == ["subscribed"]

    async def test_exclude_user_skips_all_of_their_tabs(self, engine, registry, subscriptions) -> None:
        add(registry, subscriptions, "c1", 1)
        add(registry, subscriptions, "c2", 1)
        peer = add(registry, subscriptions, "c3", 2)

        delivered = await engine.deliver_to_conversation(
            "room",
            UserTypingEnvelope(conversation_id="room", user_id=1, is_typing=True),
            exclude_user=1,
        )

        assert delivered == 1
        assert peer.types == ["user_typing"]

    async def test_include_users_reaches_unsubscribed_tabs_once(self, engine, registry, subscriptions) -> None:
        subscribed = add(registry, subscriptions, "c1", 2)
        unsubscribed = add(registry, subscriptions, "c2", 2, subscribe=False)

        delivered = await engine.deliver_to_conversation("room", envelope(), include_users=(2,))

        assert delivered == 2
        assert subscribed.sent and len(subscribed.sent) == 1
        assert unsubscribed.sent and len(unsubscribed.sent) == 1


class TestOtherTargets:
    """Test user, multi-conversation and global delivery."""

    async def test_deliver_to_user_reaches_every_tab(self, engine, registry, subscriptions) -> None:
        tabs = [add(registry, subscriptions, f"c{i}", 5, subscribe=False) for i in range(3)]
        add(registry, subscriptions, "other", 6, subscribe=False)

        assert await engine.deliver_to_user(5, envelope()) == 3
        assert all(tab.types == ["subscribed"] for tab in tabs)

    async def test_deliver_to_unknown_user(self, engine) -> None:
        assert await engine.deliver_to_user(99, envelope()) == 0

    async def test_deliver_to_conversations_dedupes(self, engine, registry, subscriptions) -> None:
        transport = add(registry, subscriptions, "c1", 1)
        subscriptions.subscribe_verified("c1", ["second"])

        delivered = await engine.deliver_to_conversations(["room", "second"], envelope())

        assert delivered == 1
        assert len(transport.sent) == 1

    async def test_broadcast_all_includes_anonymous(self, engine, registry, subscriptions) -> None:
        add(registry, subscriptions, "c1", 1, subscribe=False)
        anonymous = FakeTransport()
        registry.admit("anon", anonymous)

        assert await engine.broadcast_all(envelope(), exclude_user=1) == 1
        assert anonymous.types == ["subscribed"]

    async def test_send_to_missing_connection(self, engine) -> None:
        assert await engine.send_to_connection("ghost", envelope()) is False


class TestFailureIsolation:
    """A failing recipient never affects the others."""

    async def test_partial_failure_counts_successes(self, engine, registry, subscriptions) -> None:
        healthy = [add(registry, subscriptions, f"ok{i}", i + 1) for i in range(2)]
        add(registry, subscriptions, "bad", 3, FakeTransport(fail=True))

        delivered = await engine.deliver_to_conversation("room", envelope())

        assert delivered == 2
        assert all(t.types == ["subscribed"] for t in healthy)
        # A plain send error does not close the connection.
        assert registry.get("bad") is not None
        assert registry.get("bad").closing is False

    async def test_single_healthy_recipient_among_failures(self, engine, registry, subscriptions) -> None:
        add(registry, subscriptions, "ok", 1)
        add(registry, subscriptions, "bad", 2, FakeTransport(fail=True))

        assert await engine.deliver_to_conversation("room", envelope()) == 1

    async def test_connection_removed_mid_fanout_is_skipped(self, engine, registry, subscriptions) -> None:
        first = add(registry, subscriptions, "c1", 1)
        victim = add(registry, subscriptions, "c2", 2)
        add(registry, subscriptions, "c3", 3)

        async def remove_victim() -> None:
            registry.remove("c2")

        first.on_send = remove_victim

        delivered = await engine.deliver_to_conversation("room", envelope())

        assert delivered == 2
        assert victim.sent == []

    async def test_closing_connection_is_skipped(self, engine, registry, subscriptions) -> None:
        transport = add(registry, subscriptions, "c1", 1)
        registry.get("c1").closing = True

        assert await engine.deliver_to_conversation("room", envelope()) == 0
        assert transport.sent == []


class TestBackpressure:
    """Slow consumers are closed with 1013 instead of stalling fan-out."""

    async def test_send_timeout_closes_slow_consumer(self, registry, subscriptions) -> None:
        engine = FanoutEngine(registry, subscriptions, send_timeout=0.05, max_pending_sends=4)
        slow = add(registry, subscriptions, "slow", 1, FakeTransport(delay=1.0))
        fast = add(registry, subscriptions, "fast", 2)

        delivered = await engine.deliver_to_conversation("room", envelope())
        await engine.aclose()

        assert delivered == 1
        assert fast.types == ["subscribed"]
        assert slow.close_code == SLOW_CONSUMER_CLOSE_CODE
        assert registry.get("slow").closing is True

    async def test_pending_overflow_closes_slow_consumer(self, registry, subscriptions) -> None:
        engine = FanoutEngine(registry, subscriptions, send_timeout=0, max_pending_sends=2)
        stuck = add(registry, subscriptions, "stuck", 1, FakeTransport(block=True))

        blocked = [asyncio.create_task(engine.send_to_connection("stuck", envelope())) for _ in range(2)]
        await asyncio.sleep(0.01)

        assert await engine.send_to_connection("stuck", envelope()) is False
        await engine.aclose()
        assert stuck.close_code == SLOW_CONSUMER_CLOSE_CODE

        for task in blocked:
            task.cancel()
        await asyncio.gather(*blocked, return_exceptions=True)
        assert registry.get("stuck").pending_sends == 0


class TestOrdering:
    """Envelopes reach one connection in invocation order."""

    async def test_concurrent_sends_keep_order(self, engine, registry, subscriptions) -> None:
        transport = add(registry, subscriptions, "c1", 1, FakeTransport(delay=0.01))

        await asyncio.gather(
            *(
                engine.send_to_connection("c1", SubscribedEnvelope(conversation_id=f"room-{i}"))
                for i in range(5)
            )
        )

        assert [json.loads(frame)["conversation_id"] for frame in transport.sent] == [
            f"room-{i}" for i in range(5)
        ]
