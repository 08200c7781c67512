"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Testing:
    Clear the cache to force a reload after changing the environment:
    get_realtime_settings.cache_clear()

    Or construct settings directly:
    settings = RealtimeSettings(presence_scope="global")
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from .app import AppSettings
from .auth import AuthSettings
from .database import DatabaseSettings
from .logs import LoggingSettings
from .realtime import RealtimeSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings."""
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    """Get cached identity resolution settings."""
    return AuthSettings()


@lru_cache(maxsize=1)
def get_realtime_settings() -> RealtimeSettings:
    """Get cached realtime settings."""
    return RealtimeSettings()


@dataclass(frozen=True, slots=True)
class Settings:
    """All settings domains in one object."""

    app: AppSettings
    db: DatabaseSettings
    logging: LoggingSettings
    auth: AuthSettings
    realtime: RealtimeSettings

    def as_hook_kwargs(self) -> dict[str, object]:
        """Keyword arguments passed to lifespan hooks."""
        return {
            "app_settings": self.app,
            "db_settings": self.db,
            "log_settings": self.logging,
            "auth_settings": self.auth,
            "realtime_settings": self.realtime,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get every settings domain, each loaded through its cached getter."""
    return Settings(
        app=get_app_settings(),
        db=get_db_settings(),
        logging=get_logging_settings(),
        auth=get_auth_settings(),
        realtime=get_realtime_settings(),
    )


def clear_settings_cache() -> None:
    """Drop every cached settings instance (tests and CLI overrides)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_logging_settings,
        get_auth_settings,
        get_realtime_settings,
        get_settings,
    ):
        loader.cache_clear()
