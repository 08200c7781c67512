"""Unit tests for the connection registry."""

from __future__ import annotations

import pytest

from chat_service.infra.realtime import AlreadyIdentified, ConnectionRegistry, UnknownConnection
from tests.doubles import FakeTransport


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


class TestAdmit:
    """Test admitting anonymous connections."""

    def test_admit_registers_anonymous_connection(self, registry: ConnectionRegistry) -> None:
        connection = registry.admit("c1", FakeTransport())

        assert connection is not None
        assert connection.user_id is None
        assert not connection.is_identified
        assert "c1" in registry
        assert registry.connection_count == 1
        assert registry.user_count == 0

    def test_duplicate_id_is_ignored(self, registry: ConnectionRegistry) -> None:
        """A second admit with the same id leaves the first connection in place."""
        first = registry.admit("c1", FakeTransport())

        assert registry.admit("c1", FakeTransport()) is None
        assert registry.get("c1") is first
        assert registry.connection_count == 1


class TestIdentify:
    """Test attaching identities to connections."""

    def test_first_connection_of_user_reports_transition(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())
        registry.admit("c2", FakeTransport())

        assert registry.identify("c1", 7) is True
        assert registry.identify("c2", 7) is False
        assert registry.connection_count_of(7) == 2
        assert registry.user_ids() == [7]

    def test_reidentify_same_user_is_noop(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())
        registry.identify("c1", 7)

        assert registry.identify("c1", 7) is False
        assert registry.connection_count_of(7) == 1

    def test_reidentify_different_user_raises(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())
        registry.identify("c1", 7)

        with pytest.raises(AlreadyIdentified) as exc_info:
            registry.identify("c1", 8)

        assert exc_info.value.current_user_id == 7
        assert registry.get("c1").user_id == 7
        assert not registry.has_user(8)

    def test_identify_unknown_connection_raises(self, registry: ConnectionRegistry) -> None:
        with pytest.raises(UnknownConnection):
            registry.identify("missing", 7)


class TestRemove:
    """Test removing connections."""

    def test_remove_last_connection_removes_user(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())
        registry.identify("c1", 7)
        registry.get("c1").subscribed_conversations.update({"a", "b"})

        removed = registry.remove("c1")

        assert removed is not None
        assert removed.was_last_for_user is True
        assert removed.user_id == 7
        assert removed.subscribed_conversations == frozenset({"a", "b"})
        assert not registry.has_user(7)
        assert registry.presence_entry(7) is None
        assert "c1" not in registry

    def test_remove_one_of_several_keeps_user_online(self, registry: ConnectionRegistry) -> None:
        for cid in ("c1", "c2"):
            registry.admit(cid, FakeTransport())
            registry.identify(cid, 7)

        removed = registry.remove("c1")

        assert removed.was_last_for_user is False
        assert registry.has_user(7)
        assert [c.connection_id for c in registry.living_connections_of(7)] == ["c2"]

    def test_remove_anonymous_connection(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())

        removed = registry.remove("c1")

        assert removed.user_id is None
        assert removed.was_last_for_user is False

    def test_remove_twice_is_safe(self, registry: ConnectionRegistry) -> None:
        registry.admit("c1", FakeTransport())

        assert registry.remove("c1") is not None
        assert registry.remove("c1") is None

    def test_removed_connection_is_marked_closing(self, registry: ConnectionRegistry) -> None:
        connection = registry.admit("c1", FakeTransport())

        registry.remove("c1")

        assert connection.closing is True
        assert connection.subscribed_conversations == set()


class TestPresenceConsistency:
    """The user index always matches the identified connections."""

    def test_index_matches_connections_after_mixed_operations(self, registry: ConnectionRegistry) -> None:
        for i in range(6):
            registry.admit(f"c{i}", FakeTransport())
        for i in range(6):
            registry.identify(f"c{i}", i % 3)
        for cid in ("c0", "c3", "c4"):
            registry.remove(cid)

        by_user: dict[int, set[str]] = {}
        for connection in registry.connections():
            by_user.setdefault(connection.user_id, set()).add(connection.connection_id)

        assert registry.user_ids() == sorted(by_user)
        for user_id, cids in by_user.items():
            assert registry.presence_entry(user_id).connections == cids
