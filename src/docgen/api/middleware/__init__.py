"""Intake API middleware: request ID tracking and JSON error formatting."""

from docgen.api.middleware.errors import (
    APIError,
    AuthorizationError,
    ErrorHandlerMiddleware,
    ServiceUnavailableError,
    ValidationAPIError,
    build_error_response,
    http_exception_handler,
    request_validation_handler,
)
from docgen.api.middleware.request_id import RequestIDMiddleware, get_request_id

__all__ = [
    "APIError",
    "AuthorizationError",
    "ErrorHandlerMiddleware",
    "RequestIDMiddleware",
    "ServiceUnavailableError",
    "ValidationAPIError",
    "build_error_response",
    "get_request_id",
    "http_exception_handler",
    "request_validation_handler",
]
