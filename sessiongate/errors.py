from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .logging_config import logger


class ErrorKind(str, Enum):
    """Every rejection the gateway can produce. Routers map kinds to status codes."""

    MISSING_CREDENTIAL = "missing_credential"
    INVALID_LOGIN = "invalid_login"
    MALFORMED_TOKEN = "malformed_token"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_CLAIMS = "invalid_claims"
    EXPIRED = "expired"
    UNAUTHORIZED_USER = "unauthorized_user"
    ORIGIN_NOT_ALLOWED = "origin_not_allowed"
    RATE_LIMITED = "rate_limited"
    SESSION_NOT_FOUND = "session_not_found"
    OWNERSHIP_MISMATCH = "ownership_mismatch"
    BAD_REQUEST = "bad_request"
    STORE_TIMEOUT = "store_timeout"
    STORE_UNAVAILABLE = "store_unavailable"
    PROVIDER_FAILURE = "provider_failure"
    CONFIGURATION_ERROR = "configuration_error"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.MISSING_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_LOGIN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.MALFORMED_TOKEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_SIGNATURE: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_CLAIMS: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXPIRED: status.HTTP_403_FORBIDDEN,
    ErrorKind.UNAUTHORIZED_USER: status.HTTP_403_FORBIDDEN,
    ErrorKind.ORIGIN_NOT_ALLOWED: status.HTTP_403_FORBIDDEN,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    # Ownership mismatch is reported exactly like a missing session.
    ErrorKind.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.OWNERSHIP_MISMATCH: status.HTTP_404_NOT_FOUND,
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORE_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PROVIDER_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CONFIGURATION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

AUTH_KINDS = frozenset(
    {
        ErrorKind.MISSING_CREDENTIAL,
        ErrorKind.INVALID_LOGIN,
        ErrorKind.MALFORMED_TOKEN,
        ErrorKind.INVALID_SIGNATURE,
        ErrorKind.INVALID_CLAIMS,
        ErrorKind.EXPIRED,
        ErrorKind.UNAUTHORIZED_USER,
    }
)

SESSION_NOT_FOUND_MESSAGE = "Session not found"


class GatewayError(Exception):
    """
    A classified failure. `kind` decides the HTTP status; `message` is safe
    to return to the client.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    @property
    def public_kind(self) -> ErrorKind:
        if self.kind is ErrorKind.OWNERSHIP_MISMATCH:
            return ErrorKind.SESSION_NOT_FOUND
        return self.kind

    @property
    def public_message(self) -> str:
        if self.kind is ErrorKind.OWNERSHIP_MISMATCH:
            return SESSION_NOT_FOUND_MESSAGE
        return self.message

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, message={self.message!r})"


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is absent or inconsistent."""


class ErrorResponse(BaseModel):
    """
    Standard error payload:
    {
        "error": "session_not_found",
        "message": "Session not found",
        "code": 404,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def error_payload(exc: GatewayError) -> Dict[str, Any]:
    return ErrorResponse(
        error=exc.public_kind.value,
        message=exc.public_message,
        code=exc.status_code,
        details=None if exc.kind is ErrorKind.OWNERSHIP_MISMATCH else exc.details,
    ).model_dump()


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> GatewayError:
    return GatewayError(ErrorKind.BAD_REQUEST, message, details=details)


def session_not_found() -> GatewayError:
    return GatewayError(ErrorKind.SESSION_NOT_FOUND, SESSION_NOT_FOUND_MESSAGE)


async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.kind in AUTH_KINDS:
        logger.warning(
            "Rejected %s %s: %s (%s)",
            request.method,
            request.url.path,
            exc.kind.value,
            exc.message,
        )
    else:
        logger.info(
            "Request %s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.kind.value,
            exc.message,
        )
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc),
        headers=headers,
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler: structured 500 body plus a logged error id.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "Internal server error, please try again later",
            "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
            "error_id": error_id,
        },
    )


__all__ = [
    "AUTH_KINDS",
    "ConfigurationError",
    "ErrorKind",
    "ErrorResponse",
    "GatewayError",
    "SESSION_NOT_FOUND_MESSAGE",
    "STATUS_BY_KIND",
    "bad_request",
    "error_payload",
    "handle_gateway_error",
    "handle_unexpected_error",
    "session_not_found",
]
