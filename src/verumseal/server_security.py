"""Request hardening and error envelopes for the sealing API.

Every failure leaving the API is described by one envelope shape, with the
HTTP status, category, and failing seal stage derived from the exception
type in ``classify_exception``.
"""

from __future__ import annotations

import logging
import secrets
import time
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from verumseal.errors import SealError, StagingError, VerificationError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MIN_API_KEY_LENGTH = 32

# Sealed documents and manifests must never be cached by intermediaries
_RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}
_HSTS = "max-age=31536000; includeSubDomains"


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    VERIFICATION = "verification"
    SEAL = "seal"
    INTERNAL = "internal"


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class AuthenticationError(Exception):
    """Missing or rejected API credentials."""

    def __init__(self, message: str = "Authentication failed", code: str = "AUTH_FAILED"):
        super().__init__(message)
        self.code = code


class ErrorClass(NamedTuple):
    status_code: int
    category: ErrorCategory
    severity: ErrorSeverity
    stage: str | None = None


def classify_exception(exc: Exception) -> ErrorClass:
    """Map an exception raised while serving a request to its error class."""
    if isinstance(exc, StagingError):
        return ErrorClass(422, ErrorCategory.VALIDATION, ErrorSeverity.WARNING, exc.stage)
    if isinstance(exc, SealError):
        return ErrorClass(500, ErrorCategory.SEAL, ErrorSeverity.CRITICAL, exc.stage)
    if isinstance(exc, VerificationError):
        return ErrorClass(400, ErrorCategory.VERIFICATION, ErrorSeverity.WARNING)
    if isinstance(exc, AuthenticationError):
        return ErrorClass(401, ErrorCategory.AUTHENTICATION, ErrorSeverity.WARNING)
    if isinstance(exc, RequestValidationError):
        return ErrorClass(422, ErrorCategory.VALIDATION, ErrorSeverity.WARNING)
    if isinstance(exc, HTTPException):
        if exc.status_code < 500:
            return ErrorClass(exc.status_code, ErrorCategory.VALIDATION, ErrorSeverity.WARNING)
        return ErrorClass(exc.status_code, ErrorCategory.INTERNAL, ErrorSeverity.ERROR)
    return ErrorClass(500, ErrorCategory.INTERNAL, ErrorSeverity.ERROR)


def generate_error_id() -> str:
    """Generate a unique, sortable error id."""
    return f"err_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


@dataclass
class ErrorEnvelope:
    """Error response body.

    ``code`` is ``VERUMSEAL_<CATEGORY>`` with ``_<STAGE>`` appended for
    seal failures, e.g. ``VERUMSEAL_SEAL_RENDER``.
    """

    error_id: str
    request_id: str
    timestamp: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    stage: str | None = None
    traceback: str | None = None

    @property
    def code(self) -> str:
        code = f"VERUMSEAL_{self.category.value.upper()}"
        return f"{code}_{self.stage.upper()}" if self.stage else code

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        request_id: str,
        error_class: ErrorClass | None = None,
        include_traceback: bool = False,
    ) -> ErrorEnvelope:
        error_class = error_class or classify_exception(exc)
        message = str(exc.detail) if isinstance(exc, HTTPException) else str(exc)
        return cls(
            error_id=generate_error_id(),
            request_id=request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            category=error_class.category,
            severity=error_class.severity,
            message=message,
            stage=error_class.stage,
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            if include_traceback else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error_id": self.error_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "error": {
                "category": self.category.value,
                "severity": self.severity.value,
                "message": self.message,
                "code": self.code,
                "stage": self.stage,
            },
            "meta": {"traceback": self.traceback},
        }


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, times it, and hardens the response."""

    def __init__(self, app, strict_transport: bool = True, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.strict_transport = strict_transport
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        response.headers.update(_RESPONSE_HEADERS)
        if self.strict_transport:
            response.headers["Strict-Transport-Security"] = _HSTS
        response.headers[self.header_name] = request_id
        logger.debug(
            "%s %s -> %d in %.1f ms [%s]",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            request_id,
        )
        return response


def check_bearer_token(provided: str | None, expected: str) -> None:
    """Check a bearer token against the configured API key.

    Raises:
        AuthenticationError: If the token is missing, malformed, or wrong
    """
    if not provided:
        raise AuthenticationError(
            "API key required. Provide via Authorization: Bearer <key> header",
            code="AUTH_MISSING",
        )
    # Rejects short or low-entropy keys (e.g. a repeated character)
    if len(provided) < MIN_API_KEY_LENGTH or len(set(provided)) < 8:
        raise AuthenticationError("Invalid API key format", code="AUTH_MALFORMED")
    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Invalid API key")
