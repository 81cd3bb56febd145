"""Structured error codes for the HTTP surface.

Every router translates domain exceptions through :func:`error_payload` so
the status code and body shape stay the same across endpoints::

    {"code": "NO_CONTENT_AVAILABLE", "message": "...", "missingSources": [...]}
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from errors.exceptions import (
    BackendUnavailable,
    NoContentAvailable,
    NoSourceSelected,
    QueryInProgress,
    QueryValidationError,
    ResourceNotFound,
    ResourceRejected,
    SessionClosed,
    SessionNotFound,
)


class ErrorCode(str, Enum):
    NO_SOURCE_SELECTED = "NO_SOURCE_SELECTED"
    NO_CONTENT_AVAILABLE = "NO_CONTENT_AVAILABLE"
    QUERY_IN_PROGRESS = "QUERY_IN_PROGRESS"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_payload(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Map an exception to ``(http_status, body)``.

    Classification order (first match wins):
        1. Query validation — 422, user-actionable.
        2. Single-flight rejection — 409.
        3. Answering backend outage — 503, retryable.
        4. Missing session / resource — 404.
        5. Rejected upload — 400.
        6. Fallback — 500.
    """
    if isinstance(exc, NoSourceSelected):
        return 422, _body(ErrorCode.NO_SOURCE_SELECTED, exc)
    if isinstance(exc, NoContentAvailable):
        body = _body(ErrorCode.NO_CONTENT_AVAILABLE, exc)
        body["missingSources"] = list(exc.missing_sources)
        return 422, body
    if isinstance(exc, QueryValidationError):
        return 422, _body(ErrorCode.INVALID_REQUEST, exc)
    if isinstance(exc, QueryInProgress):
        return 409, _body(ErrorCode.QUERY_IN_PROGRESS, exc)
    if isinstance(exc, BackendUnavailable):
        body = _body(ErrorCode.BACKEND_UNAVAILABLE, exc)
        body["retryable"] = True
        return 503, body
    if isinstance(exc, (SessionNotFound, SessionClosed)):
        return 404, _body(ErrorCode.SESSION_NOT_FOUND, exc)
    if isinstance(exc, ResourceNotFound):
        return 404, _body(ErrorCode.RESOURCE_NOT_FOUND, exc)
    if isinstance(exc, ResourceRejected):
        return 400, _body(ErrorCode.INVALID_REQUEST, exc)
    return 500, {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error"}


def _body(code: ErrorCode, exc: Exception) -> dict[str, Any]:
    return {"code": code.value, "message": str(exc)}
