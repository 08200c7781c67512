"""Identity dependencies for HTTP routes.

HTTP endpoints resolve the caller with the same ``IdentityResolver`` the
WebSocket handshake uses, so a token (or trusted user id) that opens a
socket also authorizes REST calls.

Usage:
    from chat_service.core.dependencies.auth import CurrentUserId

    @router.get("/chats")
    async def list_chats(user_id: CurrentUserId): ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from chat_service.core.exceptions import ServiceUnavailableException, UnauthorizedException
from chat_service.infra.auth import HandshakeMetadata

if TYPE_CHECKING:
    from chat_service.infra.auth import IdentityResolver

logger = logging.getLogger(__name__)


def get_identity_resolver(connection: HTTPConnection) -> IdentityResolver:
    resolver = getattr(connection.app.state, "identity_resolver", None)
    if resolver is None:
        raise ServiceUnavailableException(
            detail="Identity resolution is not configured",
            type="auth-unavailable",
        )
    return resolver


async def get_optional_user_id(
    connection: HTTPConnection,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> int | None:
    return await resolver.resolve(HandshakeMetadata.from_connection(connection))


async def get_current_user_id(
    user_id: Annotated[int | None, Depends(get_optional_user_id)],
) -> int:
    """Resolve the caller or fail with 401."""
    if user_id is None:
        raise UnauthorizedException()
    return user_id


# Imported at runtime so FastAPI can resolve the string annotations above.
from chat_service.infra.auth import IdentityResolver  # noqa: E402

CurrentUserId = Annotated[int, Depends(get_current_user_id)]


__all__ = [
    "CurrentUserId",
    "get_current_user_id",
    "get_identity_resolver",
    "get_optional_user_id",
]
