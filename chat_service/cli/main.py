"""Main CLI entry point for chat-service management commands."""

import click

from chat_service.cli.commands import config, database, server
from chat_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="chat-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Chat Service CLI - run and manage the realtime chat backend.

    \b
    Quick Start:
      chat-service db upgrade      # Apply migrations
      chat-service config show     # Inspect effective settings
      chat-service serve           # Run the server
    """
    ctx.ensure_object(dict)


cli.add_command(server.serve)
cli.add_command(database.db)
cli.add_command(config.config)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
