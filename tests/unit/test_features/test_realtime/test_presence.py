"""Unit tests for presence tracking."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import itertools
import random

import pytest

from chat_service.core.settings import RealtimeSettings
from chat_service.features.realtime.hub import RealtimeHub
from tests.doubles import FakeGateway, FakeTransport, connect_user


@pytest.fixture
def room(gateway: FakeGateway) -> str:
    """Users 1, 2 and 3 share a room; user 4 shares nothing with them."""
    return gateway.add_conversation([1, 2, 3], "room")


class TestTransitions:
    """Edge-triggered online/offline events."""

    async def test_first_connection_announces_online(self, hub, room) -> None:
        _, watcher = await connect_user(hub, 2)

        await connect_user(hub, 1)

        online = watcher.of_type("user_online")
        assert [e["user_id"] for e in online] == [1]
        assert online[0]["online_count"] == 2
        assert hub.presence.is_online(1)

    async def test_second_tab_does_not_reannounce(self, hub, room) -> None:
        _, watcher = await connect_user(hub, 2)
        await connect_user(hub, 1)

        await connect_user(hub, 1)

        assert len(watcher.of_type("user_online")) == 1

    async def test_user_never_sees_own_presence(self, hub, room) -> None:
        _, first_tab = await connect_user(hub, 1)

        await connect_user(hub, 1)
        await hub.disconnect((await connect_user(hub, 1))[0])

        assert first_tab.of_type("user_online") == []
        assert first_tab.of_type("user_offline") == []

    async def test_offline_only_after_last_connection(self, hub, room) -> None:
        _, watcher = await connect_user(hub, 2)
        tab_a, _ = await connect_user(hub, 1)
        tab_b, _ = await connect_user(hub, 1)

        await hub.disconnect(tab_a)
        assert watcher.of_type("user_offline") == []
        assert hub.presence.is_online(1)

        await hub.disconnect(tab_b)
        offline = watcher.of_type("user_offline")
        assert [e["user_id"] for e in offline] == [1]
        assert offline[0]["online_count"] == 1
        assert not hub.presence.is_online(1)

    async def test_disconnect_twice_announces_once(self, hub, room) -> None:
        _, watcher = await connect_user(hub, 2)
        cid, _ = await connect_user(hub, 1)

        await hub.disconnect(cid)
        await hub.disconnect(cid)

        assert len(watcher.of_type("user_offline")) == 1

    async def test_anonymous_connections_have_no_presence(self, hub, room) -> None:
        _, watcher = await connect_user(hub, 2)
        cid, _ = await connect_user(hub, None)

        await hub.disconnect(cid)

        assert watcher.types.count("user_online") == 0
        assert watcher.types.count("user_offline") == 0
        assert hub.presence.online_user_ids() == [2]


class TestScope:
    """Who hears about presence changes."""

    async def test_conversation_scope_only_reaches_contacts(self, hub, room) -> None:
        _, contact = await connect_user(hub, 2)
        _, stranger = await connect_user(hub, 4)

        await connect_user(hub, 1)

        assert [e["user_id"] for e in contact.of_type("user_online")] == [1]
        assert stranger.of_type("user_online") == []

    async def test_global_scope_reaches_everyone(self, gateway: FakeGateway, room) -> None:
        hub = RealtimeHub(gateway, RealtimeSettings(presence_scope="global"))
        await hub.start()
        _, stranger = await connect_user(hub, 4)
        _, anonymous = await connect_user(hub, None)

        await connect_user(hub, 1)

        assert [e["user_id"] for e in stranger.of_type("user_online")] == [1]
        assert [e["user_id"] for e in anonymous.of_type("user_online")] == [1]
        await hub.stop()

    async def test_directory_failure_falls_back_to_last_subscriptions(
        self,
        hub,
        gateway: FakeGateway,
        room,
    ) -> None:
        _, watcher = await connect_user(hub, 2)
        cid, _ = await connect_user(hub, 1)
        gateway.fail_directory = True

        await hub.disconnect(cid)

        assert [e["user_id"] for e in watcher.of_type("user_offline")] == [1]


class TestDurableMirror:
    """Best-effort persistence of the online flag."""

    async def test_transitions_are_persisted(self, hub, gateway: FakeGateway, room) -> None:
        cid, _ = await connect_user(hub, 1)
        await connect_user(hub, 1)
        await hub.disconnect(cid)

        assert gateway.online_writes == [(1, True)]

    async def test_offline_is_persisted(self, hub, gateway: FakeGateway, room) -> None:
        cid, _ = await connect_user(hub, 1)

        await hub.disconnect(cid)

        assert gateway.online_writes == [(1, True), (1, False)]

    async def test_persist_failure_keeps_memory_state_and_announces(
        self,
        hub,
        gateway: FakeGateway,
        room,
    ) -> None:
        gateway.fail_presence = True
        _, watcher = await connect_user(hub, 2)

        await connect_user(hub, 1)

        assert hub.presence.is_online(1)
        assert [e["user_id"] for e in watcher.of_type("user_online")] == [1]

    async def test_write_locks_are_released(self, hub, room) -> None:
        cid, _ = await connect_user(hub, 1)
        await hub.disconnect(cid)

        assert hub.presence._user_locks == {}


def presence_events(transport: FakeTransport, user_id: int) -> list[str]:
    return [
        envelope["type"]
        for envelope in transport.envelopes
        if envelope["type"] in {"user_online", "user_offline"} and envelope["user_id"] == user_id
    ]


def slow_directory(gateway: FakeGateway, delays: Callable[[], float]) -> None:
    """Make every conversation lookup sleep for ``delays()`` seconds first."""
    lookup = gateway.list_conversations_for

    async def delayed(user_id: int) -> list[str]:
        await asyncio.sleep(delays())
        return await lookup(user_id)

    gateway.list_conversations_for = delayed


def assert_consistent(hub: RealtimeHub, watcher: FakeTransport, live: set[str]) -> None:
    entry = hub.registry.presence_entry(1)
    events = presence_events(watcher, 1)

    assert hub.presence.is_online(1) == bool(live)
    assert (entry.connections if entry else set()) == live
    assert events == ["user_online", "user_offline"] * (len(events) // 2) + ["user_online"] * (len(events) % 2)
    assert (events[-1:] == ["user_online"]) == bool(live)


class TestFlaps:
    """Observers end up with the registry's view however transitions interleave."""

    async def test_quick_connect_then_disconnect_ends_offline(self, hub, gateway: FakeGateway, room) -> None:
        _, watcher = await connect_user(hub, 2)
        delays = iter([0.05])
        slow_directory(gateway, lambda: next(delays, 0.0))
        cid = hub.admit(FakeTransport()).connection_id

        identify = asyncio.create_task(hub.identify(cid, 1))
        await asyncio.sleep(0)
        disconnect = asyncio.create_task(hub.disconnect(cid))
        await asyncio.gather(identify, disconnect)

        assert presence_events(watcher, 1) == ["user_online", "user_offline"]
        assert not hub.presence.is_online(1)
        assert gateway.online_writes[-1] == (1, False)

    async def test_quick_disconnect_then_reconnect_ends_online(self, hub, gateway: FakeGateway, room) -> None:
        _, watcher = await connect_user(hub, 2)
        old, _ = await connect_user(hub, 1)
        delays = iter([0.05])
        slow_directory(gateway, lambda: next(delays, 0.0))
        new = hub.admit(FakeTransport()).connection_id

        disconnect = asyncio.create_task(hub.disconnect(old))
        await asyncio.sleep(0)
        identify = asyncio.create_task(hub.identify(new, 1))
        await asyncio.gather(disconnect, identify)

        assert presence_events(watcher, 1) == ["user_online", "user_offline", "user_online"]
        assert hub.presence.is_online(1)
        assert gateway.online_writes[-1] == (1, True)

    async def test_other_users_do_not_wait_for_a_slow_settle(self, hub, gateway: FakeGateway, room) -> None:
        _, watcher = await connect_user(hub, 2)
        blocker = hub.admit(FakeTransport()).connection_id
        await hub.identify(blocker, 3)
        delays = iter([0.05])
        slow_directory(gateway, lambda: next(delays, 0.0))
        user_three_settle = asyncio.create_task(hub.disconnect(blocker))
        await asyncio.sleep(0)

        cid = hub.admit(FakeTransport()).connection_id
        await hub.identify(cid, 1)
        await hub.disconnect(cid)
        assert not user_three_settle.done()
        await user_three_settle

        assert presence_events(watcher, 1) == ["user_online", "user_offline"]
        assert presence_events(watcher, 3) == ["user_online", "user_offline"]


class TestPresenceSequences:
    """Online iff the user has a live identified connection, for any operation order."""

    @pytest.mark.parametrize("operations", list(itertools.product(["open", "close", "anonymous"], repeat=5)))
    async def test_sequential_operations(self, gateway: FakeGateway, room, operations: tuple[str, ...]) -> None:
        hub = RealtimeHub(gateway, RealtimeSettings())
        await hub.start()
        _, watcher = await connect_user(hub, 2)
        live: list[str] = []
        closed: list[str] = []

        for operation in operations:
            if operation == "open":
                cid, _ = await connect_user(hub, 1)
                live.append(cid)
            elif operation == "anonymous":
                await connect_user(hub, None)
            elif live:
                cid = live.pop(0)
                await hub.disconnect(cid)
                closed.append(cid)
            elif closed:
                await hub.disconnect(closed[-1])
            assert_consistent(hub, watcher, set(live))

        await hub.stop()

    @pytest.mark.parametrize("seed", range(25))
    async def test_interleaved_operations(self, gateway: FakeGateway, room, seed: int) -> None:
        rng = random.Random(seed)
        hub = RealtimeHub(gateway, RealtimeSettings())
        await hub.start()
        _, watcher = await connect_user(hub, 2)
        slow_directory(gateway, lambda: rng.uniform(0, 0.005))

        for _ in range(4):
            cids = [hub.admit(FakeTransport()).connection_id for _ in range(rng.randint(1, 3))]
            calls = [hub.identify(cid, 1) for cid in cids]
            calls += [hub.disconnect(cid) for cid in rng.sample(cids, rng.randint(0, len(cids)))]
            rng.shuffle(calls)
            await asyncio.gather(*(asyncio.create_task(call) for call in calls), return_exceptions=True)

            entry = hub.registry.presence_entry(1)
            assert_consistent(hub, watcher, set(entry.connections) if entry else set())
            writes = [write for write in gateway.online_writes if write[0] == 1]
            if writes:
                assert writes[-1] == (1, hub.presence.is_online(1))

        await hub.stop()
