"""Identity resolution protocol.

A resolver turns whatever credentials a client presented during the
WebSocket handshake (or on an HTTP request) into an integer user id. It
never raises for bad credentials: an unresolvable caller is ``None`` and the
caller decides whether anonymous access is allowed.

Implementations:
    - HttpIdentityResolver: validates a bearer token against an external service
    - TrustedIdentityResolver: trusts a user id parameter (development)
    - StaticIdentityResolver: test double
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from starlette.requests import HTTPConnection


@dataclass(frozen=True, slots=True)
class HandshakeMetadata:
    """Credentials carried by a handshake or request.

    Header names are lower-cased.
    """

    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_connection(cls, connection: HTTPConnection) -> HandshakeMetadata:
        """Capture the metadata of a Starlette ``Request`` or ``WebSocket``."""
        return cls(
            headers={key.lower(): value for key, value in connection.headers.items()},
            query_params=dict(connection.query_params),
            cookies=dict(connection.cookies),
        )

    def bearer_token(self) -> str | None:
        authorization = self.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
        return None


@runtime_checkable
class IdentityResolver(Protocol):
    """Maps handshake metadata to a user id."""

    async def resolve(self, metadata: HandshakeMetadata) -> int | None:
        """Return the caller's user id, or None when it cannot be established."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


__all__ = ["HandshakeMetadata", "IdentityResolver"]
