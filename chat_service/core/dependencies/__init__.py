"""FastAPI dependencies for route handlers.

Features import their dependencies from here rather than reaching into
``app.state`` or ``infra`` directly.
"""

from __future__ import annotations

from .auth import (
    CurrentUserId,
    get_current_user_id,
    get_identity_resolver,
    get_optional_user_id,
)
from .realtime import (
    ChatServiceDep,
    OptionalRealtimeHub,
    RealtimeHubDep,
    get_chat_service,
    get_optional_realtime_hub,
    get_realtime_hub,
)

__all__ = [
    "ChatServiceDep",
    "CurrentUserId",
    "OptionalRealtimeHub",
    "RealtimeHubDep",
    "get_chat_service",
    "get_current_user_id",
    "get_identity_resolver",
    "get_optional_realtime_hub",
    "get_optional_user_id",
    "get_realtime_hub",
]
