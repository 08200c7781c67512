"""Protocol-based identity resolver test double.

Usage:
    resolver = StaticIdentityResolver({"alice-token": 1, "bob-token": 2})
    app.state.identity_resolver = resolver

Tokens are matched against the bearer header, the ``token`` query
parameter, or the ``access_token`` cookie. ``default_user_id`` is returned
when no token matches.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from chat_service.infra.auth.protocols import HandshakeMetadata


class StaticIdentityResolver:
    def __init__(
        self,
        tokens: Mapping[str, int] | None = None,
        *,
        default_user_id: int | None = None,
    ) -> None:
        self.tokens = dict(tokens or {})
        self.default_user_id = default_user_id
        self.calls: list[HandshakeMetadata] = []
        self.closed = False

    async def resolve(self, metadata: HandshakeMetadata) -> int | None:
        self.calls.append(metadata)
        token = (
            metadata.bearer_token()
            or metadata.query_params.get("token")
            or metadata.cookies.get("access_token")
        )
        if token is not None and token in self.tokens:
            return self.tokens[token]
        return self.default_user_id

    async def aclose(self) -> None:
        self.closed = True


__all__ = ["StaticIdentityResolver"]
