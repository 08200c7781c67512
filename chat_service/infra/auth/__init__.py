"""Identity resolution for WebSocket handshakes and HTTP requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .http_client import HttpIdentityResolver
from .protocols import HandshakeMetadata, IdentityResolver
from .trusted import TrustedIdentityResolver, UserDirectory

if TYPE_CHECKING:
    from chat_service.core.settings import AuthSettings


def build_identity_resolver(settings: AuthSettings, users: UserDirectory) -> IdentityResolver:
    """Create the resolver selected by ``AUTH_MODE``."""
    if settings.mode == "http":
        return HttpIdentityResolver(settings)
    return TrustedIdentityResolver(settings, users)


__all__ = [
    "HandshakeMetadata",
    "HttpIdentityResolver",
    "IdentityResolver",
    "TrustedIdentityResolver",
    "UserDirectory",
    "build_identity_resolver",
]
