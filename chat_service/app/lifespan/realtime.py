"""Realtime lifespan: builds the hub and its collaborators on ``app.state``.

Objects already present on ``app.state`` (``chat_gateway``,
``identity_resolver``) are used as-is, which is how tests swap in doubles.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat_service.infra.realtime.exceptions import DurablePersistenceFailure

from .registry import lifespan_registry

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="realtime", startup_order=40, requires=["database"])
async def startup_realtime(
    app: FastAPI,
    realtime_settings: object,
    auth_settings: object,
    **kwargs: object,
) -> None:
    """Create the gateway, identity resolver, hub and chat service.

    Stale ``is_online`` flags left by an unclean stop are cleared first;
    presence is rebuilt from live connections only.

    Args:
        app: Application whose state receives the objects
        realtime_settings: Realtime settings
        auth_settings: Auth settings
        **kwargs: Additional settings (ignored)
    """
    from chat_service.core.settings import AuthSettings, RealtimeSettings
    from chat_service.features.chat.gateway import SqlChatGateway
    from chat_service.features.chat.service import ChatService
    from chat_service.features.realtime.hub import RealtimeHub
    from chat_service.infra.auth import build_identity_resolver
    from chat_service.infra.database import get_session_factory

    ws = (
        realtime_settings
        if isinstance(realtime_settings, RealtimeSettings)
        else RealtimeSettings.model_validate(realtime_settings)
    )
    auth = auth_settings if isinstance(auth_settings, AuthSettings) else AuthSettings.model_validate(auth_settings)

    gateway = getattr(app.state, "chat_gateway", None)
    if gateway is None:
        gateway = SqlChatGateway(get_session_factory())
        app.state.chat_gateway = gateway
    await _clear_stale_presence(gateway)

    if getattr(app.state, "identity_resolver", None) is None:
        app.state.identity_resolver = build_identity_resolver(auth, gateway)

    hub = RealtimeHub(gateway, ws)
    await hub.start()
    app.state.realtime_hub = hub
    app.state.chat_service = ChatService(gateway, hub)
    logger.info(
        "Realtime layer ready",
        extra={"auth_mode": auth.mode, "presence_scope": ws.presence_scope, "enabled": ws.enabled},
    )


@lifespan_registry.register(name="realtime")
async def shutdown_realtime(app: FastAPI, **kwargs: object) -> None:
    """Close every connection with 1001, then release the resolver."""
    hub = getattr(app.state, "realtime_hub", None)
    if hub is not None:
        await hub.stop()
        await _clear_stale_presence(hub.gateway)

    resolver = getattr(app.state, "identity_resolver", None)
    if resolver is not None:
        await resolver.aclose()

    app.state.realtime_hub = None
    app.state.chat_service = None


async def _clear_stale_presence(gateway: object) -> None:
    mark_all_offline = getattr(gateway, "mark_all_offline", None)
    if mark_all_offline is None:
        return
    try:
        count = await mark_all_offline()
    except DurablePersistenceFailure as exc:
        logger.warning("Could not reset online flags", extra={"error": exc.message})
        return
    if count:
        logger.info("Reset stale online flags", extra={"users": count})
