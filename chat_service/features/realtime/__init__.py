"""Realtime chat and presence over WebSockets."""

from __future__ import annotations

from .hub import RealtimeHub
from .presence import PresenceTracker
from .session import ChatSession

__all__ = ["ChatSession", "PresenceTracker", "RealtimeHub"]
