"""Database engine lifespan management."""

from __future__ import annotations

import logging

from chat_service.infra.database import close_database, init_database

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="database", startup_order=10, requires=["core"])
async def startup_database(db_settings: object, **kwargs: object) -> None:
    """Verify connectivity and, when configured, create missing tables.

    Args:
        db_settings: Database settings
        **kwargs: Additional settings (ignored)
    """
    from chat_service.core.settings import DatabaseSettings

    db = db_settings if isinstance(db_settings, DatabaseSettings) else DatabaseSettings.model_validate(db_settings)
    if not db.enabled:
        logger.info("Database disabled, skipping initialization")
        return

    await init_database(create_tables=db.create_tables_on_startup)
    logger.info(
        "Database initialized",
        extra={"sqlite": db.is_sqlite, "create_tables": db.create_tables_on_startup},
    )


@lifespan_registry.register(name="database")
async def shutdown_database(**kwargs: object) -> None:
    await close_database()
