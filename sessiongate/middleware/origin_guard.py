"""
Origin allow-list enforced before CORS and rate limiting.

Rejected requests get a plain 403 with no CORS headers, so browsers on a
foreign origin cannot read the body.
"""

from __future__ import annotations

from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from sessiongate.errors import ErrorKind, GatewayError, error_payload
from sessiongate.logging_config import logger


class OriginGuardMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        allowed_origins: Iterable[str] = (),
        allow_missing_origin: bool = True,
        exempt_paths: Iterable[str] = ("/health",),
    ):
        super().__init__(app)
        self.allowed_origins = frozenset(o.rstrip("/") for o in allowed_origins)
        self.allow_missing_origin = allow_missing_origin
        self.exempt_paths = frozenset(exempt_paths)

    def is_allowed(self, origin: str | None) -> bool:
        if origin is None:
            return self.allow_missing_origin
        if "*" in self.allowed_origins:
            return True
        return origin.rstrip("/") in self.allowed_origins

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        origin = request.headers.get("origin")
        if not self.is_allowed(origin):
            logger.warning(
                "Blocked %s %s from origin %r",
                request.method,
                request.url.path,
                origin,
            )
            exc = GatewayError(ErrorKind.ORIGIN_NOT_ALLOWED, "Origin not allowed")
            return JSONResponse(status_code=exc.status_code, content=error_payload(exc))

        return await call_next(request)


__all__ = ["OriginGuardMiddleware"]
