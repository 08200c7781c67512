"""Tests for the problem-details exception handlers."""

from __future__ import annotations

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from chat_service.app.exception_handlers import configure_exception_handlers, realtime_status_code
from chat_service.core.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ServiceUnavailableException,
    UnauthorizedException,
    ValidationException,
)
from chat_service.infra.realtime.exceptions import (
    ConnectionLimitReached,
    DurablePersistenceFailure,
    IdentityRequired,
    MalformedEnvelope,
    NotAMember,
    UnknownMessage,
    UnknownUser,
)


@pytest.fixture
async def client():
    app = FastAPI()
    configure_exception_handlers(app)

    @app.get("/unauthorized")
    async def unauthorized() -> None:
        raise UnauthorizedException()

    @app.get("/missing")
    async def missing() -> None:
        raise NotFoundException(detail="Conversation not found", type="conversation-not-found")

    @app.get("/forbidden")
    async def forbidden() -> None:
        raise NotAMember("room", 7)

    @app.get("/crash")
    async def crash() -> None:
        raise RuntimeError("secret internals")

    @app.get("/items/{item_id}")
    async def item(item_id: int) -> dict[str, int]:
        return {"item_id": item_id}

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestRealtimeStatusMapping:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (NotAMember("c", 1), 403),
            (IdentityRequired("who are you"), 401),
            (UnknownUser(1), 404),
            (UnknownMessage("m"), 404),
            (DurablePersistenceFailure("down"), 503),
            (ConnectionLimitReached("full"), 503),
            (MalformedEnvelope("bad"), 400),
        ],
    )
    def test_status(self, error, expected) -> None:
        assert realtime_status_code(error) == expected


class TestHandlers:
    async def test_unauthorized_has_challenge(self, client) -> None:
        response = await client.get("/unauthorized")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["title"] == "Unauthorized"

    async def test_app_exception_problem_details(self, client) -> None:
        response = await client.get("/missing")

        body = response.json()
        assert response.status_code == 404
        assert body["type"] == "conversation-not-found"
        assert body["detail"] == "Conversation not found"
        assert body["instance"] == "http://test/missing"

    async def test_realtime_error(self, client) -> None:
        response = await client.get("/forbidden")

        body = response.json()
        assert response.status_code == 403
        assert body["type"] == "not-a-member"
        assert body["details"] == {"conversation_id": "room", "user_id": 7}

    async def test_validation_error(self, client) -> None:
        response = await client.get("/items/abc")

        body = response.json()
        assert response.status_code == 422
        assert body["errors"][0]["field"] == "path.item_id"

    async def test_unexpected_error_hides_details(self, client) -> None:
        response = await client.get("/crash")

        assert response.status_code == 500
        assert response.json()["type"] == "internal-error"
        assert "secret" not in response.text


class TestAppExceptions:
    @pytest.mark.parametrize(
        ("exc", "status_code", "title", "type_"),
        [
            (UnauthorizedException(), 401, "Unauthorized", "unauthorized"),
            (ForbiddenException("nope"), 403, "Forbidden", "forbidden"),
            (NotFoundException("gone"), 404, "Not Found", "not-found"),
            (ValidationException("bad range"), 422, "Validation Error", "validation-error"),
            (ServiceUnavailableException("down"), 503, "Service Unavailable", "service-unavailable"),
        ],
    )
    def test_problem_fields(self, exc: AppException, status_code: int, title: str, type_: str) -> None:
        assert exc.status_code == status_code
        assert exc.title == title
        assert exc.type == type_
