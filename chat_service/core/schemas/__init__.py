"""Shared response schemas."""

from .problem_details import FieldError, ProblemDetail, ValidationProblemDetail

__all__ = ["FieldError", "ProblemDetail", "ValidationProblemDetail"]
