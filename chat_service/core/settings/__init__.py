"""Modular settings, one pydantic-settings class per domain."""

from __future__ import annotations

from .app import AppSettings
from .auth import AuthSettings
from .database import DatabaseSettings
from .loader import (
    Settings,
    clear_settings_cache,
    get_app_settings,
    get_auth_settings,
    get_db_settings,
    get_logging_settings,
    get_realtime_settings,
    get_settings,
)
from .logs import LoggingSettings
from .realtime import PresenceScope, RealtimeSettings

__all__ = [
    "AppSettings",
    "AuthSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "PresenceScope",
    "RealtimeSettings",
    "Settings",
    "clear_settings_cache",
    "get_app_settings",
    "get_auth_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_realtime_settings",
    "get_settings",
]
