"""Tests for the settings domains and their cached loaders."""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from chat_service.core.settings import (
    AuthSettings,
    DatabaseSettings,
    RealtimeSettings,
    clear_settings_cache,
    get_realtime_settings,
    get_settings,
)
from chat_service.core.settings.database import DEFAULT_SQLITE_URL


class TestRealtimeSettings:
    def test_defaults(self) -> None:
        settings = RealtimeSettings()

        assert settings.presence_scope == "conversations"
        assert settings.max_connections_per_user == 10
        assert settings.max_message_size == 65536
        assert settings.allow_anonymous is False
        assert settings.auto_subscribe is True

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv("WS_PRESENCE_SCOPE", "global")
        monkeypatch.setenv("WS_SEND_TIMEOUT", "1.5")

        settings = RealtimeSettings()

        assert settings.presence_scope == "global"
        assert settings.send_timeout == 1.5

    def test_rejects_unknown_scope(self) -> None:
        with pytest.raises(ValidationError):
            RealtimeSettings(presence_scope="everyone")

    def test_message_size_upper_bound(self) -> None:
        with pytest.raises(ValidationError):
            RealtimeSettings(max_message_size=2 * 1024 * 1024)

    def test_frozen(self) -> None:
        settings = RealtimeSettings()

        with pytest.raises(ValidationError):
            settings.max_connections = 1


class TestDatabaseSettings:
    @pytest.mark.parametrize(
        "dsn",
        ["postgres://u:p@db/chat", "postgresql://u:p@db/chat"],
    )
    def test_postgres_scheme_uses_psycopg(self, dsn: str) -> None:
        assert DatabaseSettings(dsn=dsn).url == "postgresql+psycopg://u:p@db/chat"

    def test_sqlite_fallback(self) -> None:
        settings = DatabaseSettings()

        assert settings.url == DEFAULT_SQLITE_URL
        assert settings.is_sqlite

    def test_pool_arguments_only_for_servers(self) -> None:
        sqlite = DatabaseSettings().engine_kwargs()
        postgres = DatabaseSettings(dsn="postgresql+psycopg://db/chat", pool_size=5).engine_kwargs()

        assert "pool_size" not in sqlite
        assert postgres["pool_size"] == 5
        assert postgres["pool_pre_ping"] is True


class TestAuthSettings:
    def test_http_mode_requires_service_url(self) -> None:
        with pytest.raises(ValidationError, match="AUTH_SERVICE_URL"):
            AuthSettings(mode="http")

    def test_http_mode(self) -> None:
        settings = AuthSettings(mode="http", service_url="https://auth.internal")

        assert str(settings.service_url).startswith("https://auth.internal")
        assert settings.identity_path == "/api/auth/me"


class TestLoaders:
    def test_cached_until_cleared(self, monkeypatch) -> None:
        first = get_realtime_settings()
        monkeypatch.setenv("WS_MAX_CONNECTIONS", "7")

        assert get_realtime_settings() is first

        clear_settings_cache()
        assert get_realtime_settings().max_connections == 7

    def test_hook_kwargs_cover_every_domain(self) -> None:
        kwargs = get_settings().as_hook_kwargs()

        assert set(kwargs) == {
            "app_settings",
            "db_settings",
            "log_settings",
            "auth_settings",
            "realtime_settings",
        }
        assert kwargs["db_settings"].enabled is False
