"""Identity resolution settings."""

from __future__ import annotations

from typing import Literal

from pydantic import AnyHttpUrl, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AuthMode = Literal["http", "trusted"]


class AuthSettings(BaseSettings):
    """How handshakes and HTTP requests are mapped to a user id.

    Environment variables use AUTH_ prefix.

    Modes:
        http: Validate a bearer token against an external identity service.
        trusted: Accept a user id from a query parameter or cookie when the
            user exists. Development only.
    """

    mode: AuthMode = Field(default="trusted", description="Identity resolution mode")

    # ──────────────────────────────────────────────────────────────
    # External identity service (mode=http)
    # ──────────────────────────────────────────────────────────────

    service_url: AnyHttpUrl | None = Field(
        default=None,
        description="Base URL of the identity service, e.g. https://auth.internal",
    )
    identity_path: str = Field(
        default="/api/auth/me",
        pattern=r"^/.*$",
        description="Path returning the caller's identity as JSON",
    )
    request_timeout: float = Field(default=5.0, ge=0.1, le=60.0, description="HTTP timeout in seconds")
    token_query_param: str = Field(default="token", description="Handshake query parameter holding a token")
    token_cookie: str = Field(default="access_token", description="Cookie holding a token")

    # ──────────────────────────────────────────────────────────────
    # Trusted mode
    # ──────────────────────────────────────────────────────────────

    user_id_query_param: str = Field(default="user_id", description="Query parameter holding a user id")
    user_id_cookie: str = Field(default="user_id", description="Cookie holding a user id")

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _require_service_url(self) -> AuthSettings:
        if self.mode == "http" and self.service_url is None:
            msg = "AUTH_SERVICE_URL is required when AUTH_MODE=http"
            raise ValueError(msg)
        return self
