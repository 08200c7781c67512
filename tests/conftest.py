"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Doubles: see tests/doubles.py
    - Realtime fixtures: hub, chat service
    - Database fixtures: in-memory SQLite engine and the SQL gateway
    - Application fixtures: FastAPI app with doubles on app.state
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
import os

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("AUTH_MODE", "trusted")
os.environ.setdefault("LOG_JSON_LOGS", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("APP_ENVIRONMENT", "test")

from chat_service.core.settings import RealtimeSettings, clear_settings_cache  # noqa: E402
from tests.doubles import FakeGateway  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    """Every test sees settings loaded from its own environment."""
    clear_settings_cache()


# ============================================================================
# Realtime fixtures
# ============================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    """In-memory gateway with users 1-4 and no conversations."""
    return FakeGateway()


@pytest.fixture
def realtime_settings() -> RealtimeSettings:
    return RealtimeSettings(send_timeout=0.5, max_pending_sends=8)


@pytest.fixture
async def hub(gateway: FakeGateway, realtime_settings: RealtimeSettings):
    """Running hub over the fake gateway, stopped after the test."""
    from chat_service.features.realtime.hub import RealtimeHub

    hub = RealtimeHub(gateway, realtime_settings)
    await hub.start()
    yield hub
    await hub.stop()


@pytest.fixture
def chat_service(gateway: FakeGateway, hub):
    from chat_service.features.chat.service import ChatService

    return ChatService(gateway, hub)


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker]:
    """Session factory over a fresh in-memory SQLite database with all tables."""
    from chat_service.core.database import Base
    from chat_service.features.chat import models  # noqa: F401
    from chat_service.infra.database import create_session_factory

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def seeded_users(session_factory) -> list[int]:
    """Users alice(1), bob(2), carol(3)."""
    from chat_service.features.chat.models import User

    async with session_factory() as session:
        users = [
            User(name="alice", email="alice@example.com"),
            User(name="bob", email="bob@example.com"),
            User(name="carol", email="carol@example.com"),
        ]
        session.add_all(users)
        await session.commit()
        return [user.id for user in users]


@pytest.fixture
def sql_gateway(session_factory, seeded_users):
    from chat_service.features.chat.gateway import SqlChatGateway

    return SqlChatGateway(session_factory)


# ============================================================================
# Application fixtures
# ============================================================================


@pytest.fixture
def static_resolver():
    from chat_service.infra.auth.testing import StaticIdentityResolver

    return StaticIdentityResolver({"alice": 1, "bob": 2, "carol": 3})


@pytest.fixture
def app(gateway: FakeGateway, static_resolver):
    """FastAPI application with the fake gateway and static resolver on app.state."""
    from chat_service.app.main import create_app

    app = create_app()
    app.state.chat_gateway = gateway
    app.state.identity_resolver = static_resolver
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """HTTP client with the application lifespan running."""
    from chat_service.app.lifespan import lifespan

    async with lifespan(app), AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


