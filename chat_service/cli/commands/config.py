"""Configuration commands."""

import json

import click

from chat_service.cli.utils import header, section, success, warning
from chat_service.core.settings import get_settings


def _redact_dsn(url: str) -> str:
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


def collect_config(show_secrets: bool = False) -> dict[str, dict[str, object]]:
    """Effective settings grouped by domain."""
    settings = get_settings()
    return {
        "app": {
            "service_name": settings.app.service_name,
            "environment": settings.app.environment,
            "debug": settings.app.debug,
            "host": settings.app.host,
            "port": settings.app.port,
            "api_prefix": settings.app.api_prefix,
        },
        "database": {
            "enabled": settings.db.enabled,
            "url": settings.db.url if show_secrets else _redact_dsn(settings.db.url),
            "pool_size": settings.db.pool_size,
            "create_tables_on_startup": settings.db.create_tables_on_startup,
        },
        "auth": {
            "mode": settings.auth.mode,
            "service_url": settings.auth.service_url,
            "identity_path": settings.auth.identity_path,
        },
        "realtime": {
            "enabled": settings.realtime.enabled,
            "presence_scope": settings.realtime.presence_scope,
            "max_connections": settings.realtime.max_connections,
            "max_connections_per_user": settings.realtime.max_connections_per_user,
            "max_message_size": settings.realtime.max_message_size,
            "send_timeout": settings.realtime.send_timeout,
            "max_pending_sends": settings.realtime.max_pending_sends,
            "allow_anonymous": settings.realtime.allow_anonymous,
            "auto_subscribe": settings.realtime.auto_subscribe,
        },
        "logging": {
            "level": settings.logging.level,
            "json_logs": settings.logging.json_logs,
        },
    }


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""


@config.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.option(
    "--show-secrets/--hide-secrets",
    default=False,
    help="Show credentials embedded in URLs",
)
def show(output_format: str, show_secrets: bool) -> None:
    """Display the effective configuration."""
    config_dict = collect_config(show_secrets)

    if output_format == "json":
        click.echo(json.dumps(config_dict, indent=2, default=str))
        return

    header("Effective configuration")
    if not show_secrets:
        warning("Secrets are hidden. Use --show-secrets to display them.")
    for name, values in config_dict.items():
        section(name.upper())
        for key, value in values.items():
            click.echo(f"  {key:30} = {value}")
    success("Configuration loaded successfully!")
