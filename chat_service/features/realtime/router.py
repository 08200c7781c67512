"""Realtime endpoints.

Endpoints:
- WS  /ws/chat: chat and presence stream (see ``schemas`` for the protocol)
- GET /ws/presence: users currently online
- GET /ws/presence/{user_id}: one user's presence
- GET /ws/stats: connection, user and subscription counts

Handshake credentials are whatever the configured identity resolver reads
(bearer header, token query parameter or cookie, or a trusted user id).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, status
from pydantic import BaseModel

from chat_service.core.dependencies import (
    OptionalRealtimeHub,
    RealtimeHubDep,
    get_chat_service,
    get_identity_resolver,
)
from chat_service.core.exceptions import AppException
from chat_service.features.realtime.session import ChatSession
from chat_service.infra.auth import HandshakeMetadata

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ws", tags=["realtime"])


class PresenceSnapshot(BaseModel):
    online_user_ids: list[int]
    online_count: int


class UserPresence(BaseModel):
    user_id: int
    is_online: bool
    connections: int


class RealtimeStats(BaseModel):
    connections: int
    online_users: int
    subscribed_conversations: int
    presence_scope: str
    uptime_seconds: float


@router.websocket("/chat")
async def chat_websocket(websocket: WebSocket, hub: OptionalRealtimeHub) -> None:
    """Realtime chat endpoint.

    The socket is accepted first so refusals carry a close code the client
    can read: 1013 when the server is unavailable or full, 1008 when the
    caller could not be identified.
    """
    await websocket.accept()

    if hub is None or not hub.is_running or not hub.settings.enabled:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Realtime unavailable")
        return
    if hub.at_capacity():
        logger.warning("Connection refused at capacity", extra={"limit": hub.settings.max_connections})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Server at capacity")
        return

    try:
        resolver = get_identity_resolver(websocket)
        service = get_chat_service(websocket)
    except AppException as exc:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=exc.detail)
        return

    user_id = await resolver.resolve(HandshakeMetadata.from_connection(websocket))
    if user_id is None and not hub.settings.allow_anonymous:
        logger.info("Unauthenticated handshake refused")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required")
        return

    await ChatSession(websocket, hub, service, user_id=user_id).run()


@router.get("/presence", response_model=PresenceSnapshot, summary="Users currently online")
async def presence_snapshot(hub: RealtimeHubDep) -> PresenceSnapshot:
    return PresenceSnapshot(
        online_user_ids=hub.presence.online_user_ids(),
        online_count=hub.presence.online_count,
    )


@router.get("/presence/{user_id}", response_model=UserPresence, summary="One user's presence")
async def user_presence(user_id: int, hub: RealtimeHubDep) -> UserPresence:
    return UserPresence(
        user_id=user_id,
        is_online=hub.presence.is_online(user_id),
        connections=hub.registry.connection_count_of(user_id),
    )


@router.get("/stats", response_model=RealtimeStats, summary="Realtime statistics")
async def realtime_stats(hub: RealtimeHubDep) -> RealtimeStats:
    return RealtimeStats(**hub.stats())
