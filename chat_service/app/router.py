"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat_service.core.settings import get_app_settings
from chat_service.features.chat.router import router as chat_router
from chat_service.features.health.router import router as health_router
from chat_service.features.metrics.router import router as metrics_router
from chat_service.features.realtime.router import router as realtime_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from chat_service.core.settings import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register every feature router.

    ``/metrics`` and ``/health`` stay at the root for scrapers and probes;
    everything else lives under ``APP_API_PREFIX``.
    """
    app_settings = app_settings or get_app_settings()
    api_prefix = app_settings.api_prefix

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(chat_router, prefix=api_prefix)
    app.include_router(realtime_router, prefix=api_prefix)

    logger.debug("Routers registered", extra={"api_prefix": api_prefix})
