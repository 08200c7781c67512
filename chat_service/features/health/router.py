"""Health endpoints.

- /health: liveness, never touches dependencies
- /health/ready: database reachable and realtime hub running
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from chat_service.core.dependencies import OptionalRealtimeHub
from chat_service.core.settings import get_app_settings, get_db_settings
from chat_service.infra.database import get_async_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class LivenessResponse(BaseModel):
    status: Literal["ok"] = "ok"
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(BaseModel):
    ready: bool
    checks: dict[str, bool]


@router.get("", response_model=LivenessResponse, summary="Liveness probe")
async def liveness() -> LivenessResponse:
    settings = get_app_settings()
    return LivenessResponse(
        service=settings.service_name,
        version=settings.version,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    responses={503: {"description": "A required dependency is not ready"}},
)
async def readiness(hub: OptionalRealtimeHub, response: Response) -> ReadinessResponse:
    checks = {"realtime": hub is not None and hub.is_running}
    if get_db_settings().enabled:
        checks["database"] = await _database_reachable()

    ready = all(checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=ready, checks=checks)


async def _database_reachable() -> bool:
    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database check failed", extra={"error": str(exc)})
        return False
    return True
