"""Application lifespan.

Importing the hook modules registers them on ``lifespan_registry``; the
lifespan context runs them with every settings domain plus ``app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from chat_service.app.lifespan import core, database, realtime
from chat_service.app.lifespan.registry import lifespan_registry
from chat_service.core.settings import get_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

# Imported for hook registration.
_ = (core, database, realtime)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup hooks, serve, then run shutdown hooks in reverse."""
    hook_kwargs = {"app": app, **get_settings().as_hook_kwargs()}
    await lifespan_registry.startup(**hook_kwargs)
    try:
        yield
    finally:
        await lifespan_registry.shutdown(**hook_kwargs)


__all__ = ["lifespan", "lifespan_registry"]
