"""Realtime dependencies for FastAPI route and WebSocket handlers.

The hub and chat service are built by the ``realtime`` lifespan hook and
live on ``app.state``. ``HTTPConnection`` covers both ``Request`` and
``WebSocket``, so the same dependencies serve HTTP routes and the
WebSocket endpoint.

Usage:
    from chat_service.core.dependencies.realtime import RealtimeHubDep

    @router.get("/ws/stats")
    async def stats(hub: RealtimeHubDep):
        return hub.stats()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from chat_service.core.exceptions import ServiceUnavailableException

if TYPE_CHECKING:
    from chat_service.features.chat.service import ChatService
    from chat_service.features.realtime.hub import RealtimeHub


def get_optional_realtime_hub(connection: HTTPConnection) -> RealtimeHub | None:
    """Return the application's hub, or None before startup / when disabled."""
    return getattr(connection.app.state, "realtime_hub", None)


def get_realtime_hub(connection: HTTPConnection) -> RealtimeHub:
    """Return the application's hub.

    Raises:
        ServiceUnavailableException: If the realtime layer is not running
    """
    hub = get_optional_realtime_hub(connection)
    if hub is None:
        raise ServiceUnavailableException(
            detail="Realtime hub is not available",
            type="realtime-unavailable",
        )
    return hub


def get_chat_service(connection: HTTPConnection) -> ChatService:
    service = getattr(connection.app.state, "chat_service", None)
    if service is None:
        raise ServiceUnavailableException(
            detail="Chat service is not available",
            type="chat-unavailable",
        )
    return service


# Imported at runtime for the Annotated aliases below.
from chat_service.features.chat.service import ChatService  # noqa: E402
from chat_service.features.realtime.hub import RealtimeHub  # noqa: E402

RealtimeHubDep = Annotated[RealtimeHub, Depends(get_realtime_hub)]
OptionalRealtimeHub = Annotated[RealtimeHub | None, Depends(get_optional_realtime_hub)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]


__all__ = [
    "ChatServiceDep",
    "OptionalRealtimeHub",
    "RealtimeHubDep",
    "get_chat_service",
    "get_optional_realtime_hub",
    "get_realtime_hub",
]
