"""Core lifespan services: logging and the application info metric.

These run first and have no dependencies.
"""

from __future__ import annotations

import logging

from chat_service.infra.logging import setup_logging
from chat_service.infra.metrics.prometheus import application_info

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="core", startup_order=1)
async def startup_core(
    app_settings: object,
    log_settings: object,
    **kwargs: object,
) -> None:
    """Configure logging and publish ``application_info``.

    Args:
        app_settings: Application settings
        log_settings: Logging settings
        **kwargs: Additional settings (ignored)
    """
    from chat_service.core.settings import AppSettings, LoggingSettings

    app = app_settings if isinstance(app_settings, AppSettings) else AppSettings.model_validate(app_settings)
    log = log_settings if isinstance(log_settings, LoggingSettings) else LoggingSettings.model_validate(log_settings)

    setup_logging(log_settings=log, force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment, "version": app.version},
    )

    application_info.labels(
        version=app.version,
        service=app.service_name,
        environment=app.environment,
    ).set(1)


@lifespan_registry.register(name="core")
async def shutdown_core(**kwargs: object) -> None:
    logger.info("Application stopped")
