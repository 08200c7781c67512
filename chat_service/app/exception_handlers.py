"""Global exception handlers for the FastAPI application.

Every error leaves the HTTP surface as RFC 7807 problem details. Realtime
errors raised by the shared chat service map onto HTTP statuses here; over
the WebSocket the same errors become ``error`` envelopes instead.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chat_service.core.exceptions import AppException
from chat_service.core.schemas import FieldError, ProblemDetail, ValidationProblemDetail
from chat_service.infra.realtime.exceptions import (
    ConnectionLimitReached,
    DurablePersistenceFailure,
    IdentityRequired,
    NotAMember,
    RealtimeError,
    UnknownMessage,
    UnknownUser,
)

logger = logging.getLogger(__name__)

_REALTIME_STATUS: dict[type[RealtimeError], int] = {
    NotAMember: status.HTTP_403_FORBIDDEN,
    IdentityRequired: status.HTTP_401_UNAUTHORIZED,
    UnknownUser: status.HTTP_404_NOT_FOUND,
    UnknownMessage: status.HTTP_404_NOT_FOUND,
    DurablePersistenceFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConnectionLimitReached: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _problem(
    status_code: int,
    detail: str,
    type_: str = "about:blank",
    title: str | None = None,
    instance: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    problem = ProblemDetail(
        type=type_,
        title=title or AppException.default_title(status_code),
        status=status_code,
        detail=detail,
        instance=instance,
    )
    data = problem.model_dump(exclude_none=True)
    if extra:
        data.update(extra)
    return data


def realtime_status_code(exc: RealtimeError) -> int:
    """HTTP status for a realtime error raised during an HTTP request."""
    for error_type in type(exc).__mro__:
        if error_type in _REALTIME_STATUS:
            return _REALTIME_STATUS[error_type]
    return status.HTTP_400_BAD_REQUEST


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        "Application exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": exc.type,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_problem(
            exc.status_code,
            exc.detail,
            type_=exc.type,
            title=exc.title,
            instance=exc.instance or str(request.url),
            extra=exc.extra,
        ),
        headers=headers,
    )


async def realtime_exception_handler(request: Request, exc: RealtimeError) -> JSONResponse:
    """Map realtime and persistence errors raised by the chat service."""
    status_code = realtime_status_code(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Chat operation failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "code": exc.code,
            "status_code": status_code,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content=_problem(
            status_code,
            exc.message,
            type_=exc.code.replace("_", "-"),
            instance=str(request.url),
            extra={"details": exc.details} if exc.details else None,
        ),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Convert request validation errors into field-level problem details."""
    errors = [
        FieldError(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            type=error["type"],
        )
        for error in exc.errors()
    ]
    logger.info(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "error_count": len(errors)},
    )
    problem = ValidationProblemDetail(
        type="validation-error",
        title="Validation Error",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Request validation failed for {len(errors)} field(s)",
        instance=str(request.url),
        errors=errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=problem.model_dump(exclude_none=True),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unexpected exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_problem(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred while processing your request",
            type_="internal-error",
            instance=str(request.url),
        ),
    )


def configure_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RealtimeError, realtime_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "app_exception_handler",
    "configure_exception_handlers",
    "generic_exception_handler",
    "realtime_exception_handler",
    "realtime_status_code",
    "validation_exception_handler",
]
