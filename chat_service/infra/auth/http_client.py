"""HTTP identity resolver (external identity service).

The token is looked up in this order: ``Authorization: Bearer``, the
configured query parameter, then the configured cookie. It is forwarded as
a bearer token to ``AUTH_SERVICE_URL`` + ``AUTH_IDENTITY_PATH``, which must
answer 200 with a JSON object holding the user id under ``user_id``,
``userId`` or ``id``.

Every failure (no token, 4xx/5xx, network error, malformed body) resolves
to ``None`` and is logged; the handshake is then refused by the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from chat_service.core.settings import AuthSettings
    from chat_service.infra.auth.protocols import HandshakeMetadata

logger = logging.getLogger(__name__)

_USER_ID_KEYS = ("user_id", "userId", "id")


class HttpIdentityResolver:
    """Resolve identities by calling the identity service with the caller's token.

    Example:
        resolver = HttpIdentityResolver(get_auth_settings())
        user_id = await resolver.resolve(HandshakeMetadata.from_connection(websocket))
        await resolver.aclose()
    """

    def __init__(
        self,
        settings: AuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            settings: Auth settings with ``service_url`` configured
            transport: Optional httpx transport (``httpx.MockTransport`` in tests)
        """
        if settings.service_url is None:
            msg = "AUTH_SERVICE_URL is required for the HTTP identity resolver"
            raise ValueError(msg)
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=str(settings.service_url),
            timeout=settings.request_timeout,
            transport=transport,
        )

    def extract_token(self, metadata: HandshakeMetadata) -> str | None:
        return (
            metadata.bearer_token()
            or metadata.query_params.get(self._settings.token_query_param)
            or metadata.cookies.get(self._settings.token_cookie)
            or None
        )

    async def resolve(self, metadata: HandshakeMetadata) -> int | None:
        token = self.extract_token(metadata)
        if token is None:
            logger.debug("No credentials presented")
            return None

        try:
            response = await self._client.get(
                self._settings.identity_path,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Identity service unreachable", extra={"error": str(exc)})
            return None

        if response.status_code != httpx.codes.OK:
            logger.info(
                "Identity service rejected credentials",
                extra={"status_code": response.status_code},
            )
            return None

        try:
            body = response.json()
        except ValueError:
            logger.warning("Identity service returned a non-JSON body")
            return None
        return _user_id_from(body)

    async def aclose(self) -> None:
        await self._client.aclose()


def _user_id_from(body: Any) -> int | None:
    if not isinstance(body, dict):
        logger.warning("Identity response is not an object")
        return None
    for key in _USER_ID_KEYS:
        value = body.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            break
    logger.warning("Identity response carries no usable user id", extra={"keys": sorted(body)})
    return None


__all__ = ["HttpIdentityResolver"]
