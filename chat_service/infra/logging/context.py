"""Context propagation for structured logging.

Each WebSocket session runs in its own task, and every task gets its own
copy of the context variable. Binding ``connection_id`` and ``user_id``
once at the start of a session therefore tags every record that session
produces, including records emitted deep inside the realtime layer.
"""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(connection_id="c-1", user_id=42)
        logger.info("Subscribed")  # record carries connection_id and user_id
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop every field from the current task's logging context."""
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Copy the contextvars log context onto each LogRecord.

    Attached to the queue handler by ``configure_logging`` so formatters
    (notably ``JSONFormatter``) see the fields without any call-site changes.
    Fields already present on the record win.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
