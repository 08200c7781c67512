"""Tests for the generic repository over SQLite."""

from __future__ import annotations

import pytest

from chat_service.features.chat.models import User
from chat_service.features.chat.repository import UserRepository


@pytest.fixture
def users() -> UserRepository:
    return UserRepository()


class TestBaseRepository:
    async def test_create_and_get(self, session_factory, users) -> None:
        async with session_factory() as session:
            user = await users.create(session, User(name="dave", email="dave@example.com"))
            await session.commit()

        async with session_factory() as session:
            loaded = await users.get(session, user.id)
            by_email = await users.get_by(session, User.email, "dave@example.com")

        assert loaded is not None
        assert loaded.name == "dave"
        assert loaded.is_online is False
        assert by_email.id == user.id

    async def test_missing_rows(self, session_factory, users) -> None:
        async with session_factory() as session:
            assert await users.get(session, 404) is None
            assert await users.get_by(session, User.email, "nobody@example.com") is None

    async def test_existing_ids(self, session_factory, users, seeded_users) -> None:
        async with session_factory() as session:
            assert await users.existing_ids(session, [*seeded_users, 999]) == set(seeded_users)
