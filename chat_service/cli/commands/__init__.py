"""CLI command modules."""

from chat_service.cli.commands import config, database, server

__all__ = ["config", "database", "server"]
