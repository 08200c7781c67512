"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from chat_service.app.exception_handlers import configure_exception_handlers
from chat_service.app.lifespan import lifespan
from chat_service.app.router import setup_routers
from chat_service.core.settings import get_settings


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Nothing stateful is created here: the realtime hub, gateway and
    identity resolver are built by the lifespan hooks and kept on
    ``app.state``, so every app instance owns its own connection state.
    """
    app_settings = get_settings().app

    app = FastAPI(
        title=app_settings.title,
        description=app_settings.description,
        version=app_settings.version,
        docs_url=app_settings.docs_url,
        redoc_url=None,
        openapi_url=app_settings.openapi_url,
        debug=app_settings.debug,
        lifespan=lifespan,
    )

    configure_exception_handlers(app)
    setup_routers(app, app_settings)
    return app


# Application instance for uvicorn
app = create_app()
