"""Database foundation: declarative base, mixins, and the generic repository."""

from __future__ import annotations

from .base import Base, IntegerPKMixin, StringPKMixin, TimestampMixin, new_id, utcnow
from .repository import BaseRepository
from .types import UTCDateTime

__all__ = [
    "Base",
    "BaseRepository",
    "IntegerPKMixin",
    "StringPKMixin",
    "TimestampMixin",
    "UTCDateTime",
    "new_id",
    "utcnow",
]
