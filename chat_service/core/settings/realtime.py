"""Realtime (WebSocket) configuration settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PresenceScope = Literal["conversations", "global"]


class RealtimeSettings(BaseSettings):
    """WebSocket server, presence, and fan-out settings.

    Environment variables use WS_ prefix.
    Example: WS_PRESENCE_SCOPE=global
    """

    # ──────────────────────────────────────────────────────────────
    # Connection limits
    # ──────────────────────────────────────────────────────────────

    max_connections: int = Field(
        default=10000,
        ge=1,
        le=100000,
        description="Maximum concurrent WebSocket connections per process",
    )

    max_connections_per_user: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum live connections (tabs/devices) per user",
    )

    max_message_size: int = Field(
        default=65536,
        ge=1024,
        le=1048576,
        description="Maximum incoming message size in bytes (default 64KB)",
    )

    max_subscriptions_per_connection: int = Field(
        default=200,
        ge=1,
        le=5000,
        description="Maximum conversations a single connection can subscribe to",
    )

    # ──────────────────────────────────────────────────────────────
    # Outbound backpressure
    # ──────────────────────────────────────────────────────────────

    send_timeout: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Seconds a single send may take before the recipient counts as failed (0 to disable)",
    )

    max_pending_sends: int = Field(
        default=64,
        ge=1,
        le=10000,
        description="Queued sends per connection before it is closed as a slow consumer",
    )

    # ──────────────────────────────────────────────────────────────
    # Presence and subscriptions
    # ──────────────────────────────────────────────────────────────

    presence_scope: PresenceScope = Field(
        default="conversations",
        description=(
            "Audience for user_online/user_offline: subscribers of the user's "
            "conversations, or every live connection"
        ),
    )

    allow_anonymous: bool = Field(
        default=False,
        description="Keep connections whose identity could not be resolved",
    )

    auto_subscribe: bool = Field(
        default=True,
        description="Subscribe new connections to all of the user's conversations",
    )

    # ──────────────────────────────────────────────────────────────
    # History
    # ──────────────────────────────────────────────────────────────

    history_page_size: int = Field(default=50, ge=1, le=500, description="Default history page size")
    max_history_page_size: int = Field(default=200, ge=1, le=1000, description="Largest history page")

    # ──────────────────────────────────────────────────────────────
    # Feature flags
    # ──────────────────────────────────────────────────────────────

    enabled: bool = Field(default=True, description="Enable WebSocket endpoints")

    model_config = SettingsConfigDict(
        env_prefix="WS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
