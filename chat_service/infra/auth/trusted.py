"""Trusted identity resolver for development.

Reads a user id from a query parameter or cookie and accepts it when the
user exists. There is no credential check at all, so never enable this
mode on a public deployment.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from chat_service.infra.realtime.exceptions import DurablePersistenceFailure

if TYPE_CHECKING:
    from chat_service.core.settings import AuthSettings
    from chat_service.infra.auth.protocols import HandshakeMetadata

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    async def user_exists(self, user_id: int) -> bool: ...


class TrustedIdentityResolver:
    def __init__(self, settings: AuthSettings, users: UserDirectory) -> None:
        self._settings = settings
        self._users = users

    async def resolve(self, metadata: HandshakeMetadata) -> int | None:
        raw = metadata.query_params.get(self._settings.user_id_query_param) or metadata.cookies.get(
            self._settings.user_id_cookie
        )
        if not raw:
            return None
        try:
            user_id = int(raw)
        except ValueError:
            logger.info("Ignoring non-integer user id", extra={"value": raw[:32]})
            return None
        if user_id <= 0:
            return None

        try:
            exists = await self._users.user_exists(user_id)
        except DurablePersistenceFailure as exc:
            logger.warning("User lookup failed during identity resolution", extra={"error": exc.message})
            return None
        if not exists:
            logger.info("Unknown user id presented", extra={"user_id": user_id})
            return None
        return user_id

    async def aclose(self) -> None:
        return None


__all__ = ["TrustedIdentityResolver", "UserDirectory"]
