"""RFC 7807 problem details response bodies."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs.

    See: https://datatracker.ietf.org/doc/html/rfc7807

    Example:
        return JSONResponse(
            status_code=403,
            content=ProblemDetail(
                type="not-a-member",
                title="Forbidden",
                status=403,
                detail="Not a member of this conversation",
                instance="/api/v1/chats/c0ffee/messages",
            ).model_dump(exclude_none=True),
        )
    """

    type: str = Field(default="about:blank", description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary of the problem type")
    status: int = Field(..., ge=400, le=599, description="HTTP status code")
    detail: str | None = Field(default=None, description="Explanation specific to this occurrence")
    instance: str | None = Field(default=None, description="URI reference of this occurrence")


class FieldError(BaseModel):
    field: str
    message: str
    type: str
    value: Any | None = None


class ValidationProblemDetail(ProblemDetail):
    errors: list[FieldError] = Field(default_factory=list)


__all__ = ["FieldError", "ProblemDetail", "ValidationProblemDetail"]
