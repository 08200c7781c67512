"""Server commands."""

import click

from chat_service.cli.utils import info
from chat_service.core.settings import get_app_settings


@click.command(name="serve")
@click.option("--host", default=None, help="Host to bind (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default: APP_PORT)")
@click.option(
    "--reload/--no-reload",
    default=None,
    help="Auto-reload on code changes (default: APP_RELOAD)",
)
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["critical", "error", "warning", "info", "debug", "trace"]),
    help="Uvicorn log level",
)
def serve(host: str | None, port: int | None, reload: bool | None, log_level: str) -> None:
    """Run the chat service with uvicorn.

    A single worker process is used: connection and presence state live in
    that process's memory.
    """
    import uvicorn

    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port
    reload = settings.reload if reload is None else reload

    info(f"Server will run at: http://{host}:{port}")
    info(f"Environment: {settings.environment}")
    info(f"Auto-reload: {'enabled' if reload else 'disabled'}")

    uvicorn.run(
        "chat_service.app.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )
