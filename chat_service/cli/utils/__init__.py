"""CLI utilities for running async operations and formatting output."""

from chat_service.cli.utils.async_runner import coro
from chat_service.cli.utils.formatters import (
    error,
    header,
    info,
    section,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "section",
    "success",
    "warning",
]
