"""
Sliding-window rate limiting.

A rejected request is never recorded, so callers that keep hammering an
exhausted window do not push their own reset time further out.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Match
from starlette.types import ASGIApp

from sessiongate.errors import ErrorKind, GatewayError, error_payload
from sessiongate.logging_config import logger

EXEMPT_PATHS = frozenset({"/health", "/favicon.ico"})
UNMATCHED_ROUTE_KEY = "<unmatched>"


class InMemoryRateLimiter:
    """
    Per-process limiter; counters are approximate and reset on restart.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: int = 60,
    ):
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._clock = clock
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._last_cleanup = clock()
        self._longest_window = 0

    async def is_rate_limited(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> tuple[bool, int, int]:
        """
        Returns:
            (is_limited, remaining, reset_time)
        """
        now = self._clock()
        self._longest_window = max(self._longest_window, window_seconds)
        if now - self._last_cleanup >= self._cleanup_interval_seconds:
            self.cleanup_old_entries(self._longest_window)
            self._last_cleanup = now

        cutoff = now - window_seconds
        window = [ts for ts in self._requests[key] if ts > cutoff]
        self._requests[key] = window

        if len(window) >= max_requests:
            oldest_ts = min(window) if window else now
            return True, 0, int(oldest_ts + window_seconds)

        window.append(now)
        return False, max_requests - len(window), int(now + window_seconds)

    def cleanup_old_entries(self, max_age_seconds: int = 3600) -> None:
        cutoff = self._clock() - max_age_seconds
        for key in list(self._requests):
            self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]
            if not self._requests[key]:
                del self._requests[key]


class RedisRateLimiter:
    """
    Shared limiter using one ZSET per key as the sliding window.
    """

    def __init__(self, redis_client: Redis, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self._clock = clock

    async def is_rate_limited(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> tuple[bool, int, int]:
        now = self._clock()
        redis_key = f"sessiongate:ratelimit:{key}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
        pipe.zcard(redis_key)
        results = await pipe.execute()
        current_count = int(results[1])

        if current_count >= max_requests:
            oldest = await self.redis.zrange(redis_key, 0, 0, withscores=True)
            oldest_ts = oldest[0][1] if oldest else now
            return True, 0, int(oldest_ts + window_seconds)

        pipe = self.redis.pipeline()
        pipe.zadd(redis_key, {repr(now): now})
        pipe.expire(redis_key, window_seconds + 10)
        await pipe.execute()
        return False, max_requests - current_count - 1, int(now + window_seconds)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per client IP and route template. Runs inside the CORS layer so a 429 still carries
    CORS headers for allowed origins.
    """

    def __init__(
        self,
        app: ASGIApp,
        redis_client: Redis | None = None,
        default_max_requests: int = 100,
        default_window_seconds: int = 900,
        path_limits: dict[str, tuple[int, int]] | None = None,
        get_client_ip: Callable[[Request], str] | None = None,
        limiter: InMemoryRateLimiter | RedisRateLimiter | None = None,
        trusted_proxy_hops: int = 0,
    ):
        """
        Args:
            redis_client: use the shared Redis limiter instead of in-memory
            trusted_proxy_hops: proxies whose X-Forwarded-For entries are
                trusted; 0 keys on the socket peer only
            path_limits: {path_prefix: (max_requests, window_seconds)}
            limiter: explicit limiter instance (tests)
        """
        super().__init__(app)

        if limiter is not None:
            self.limiter = limiter
        elif redis_client is not None:
            self.limiter = RedisRateLimiter(redis_client)
        else:
            self.limiter = InMemoryRateLimiter()

        self.default_max_requests = default_max_requests
        self.default_window_seconds = default_window_seconds
        self.path_limits = path_limits or {}
        self.trusted_proxy_hops = trusted_proxy_hops
        self.get_client_ip = get_client_ip or self._default_get_client_ip

    def _default_get_client_ip(self, request: Request) -> str:
        peer = request.client.host if request.client else "unknown"
        if self.trusted_proxy_hops <= 0:
            return peer

        forwarded = [
            part.strip()
            for part in request.headers.get("X-Forwarded-For", "").split(",")
            if part.strip()
        ]
        if not forwarded:
            return peer
        # Each trusted proxy appends the address it received the request from;
        # entries left of those are client-supplied.
        return forwarded[max(len(forwarded) - self.trusted_proxy_hops, 0)]

    @staticmethod
    def _route_key(request: Request) -> str:
        """
        Path template of the matching route, so /api/sessions/{session_id}
        is one bucket however many ids a client tries.
        """
        partial = None
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match is Match.FULL:
                return getattr(route, "path", UNMATCHED_ROUTE_KEY)
            if match is Match.PARTIAL and partial is None:
                partial = getattr(route, "path", None)
        return partial or UNMATCHED_ROUTE_KEY

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = self.get_client_ip(request)
        max_requests = self.default_max_requests
        window_seconds = self.default_window_seconds
        for path_prefix, (max_req, window) in self.path_limits.items():
            if path.startswith(path_prefix):
                max_requests, window_seconds = max_req, window
                break

        is_limited, remaining, reset_time = await self.limiter.is_rate_limited(
            f"{client_ip}:{self._route_key(request)}", max_requests, window_seconds
        )
        headers = {
            "X-RateLimit-Limit": str(max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_time),
        }

        if is_limited:
            retry_after = max(1, reset_time - int(time.time()))
            logger.warning("Rate limit exceeded for %s on %s", client_ip, path)
            exc = GatewayError(
                ErrorKind.RATE_LIMITED,
                "Too many requests, please retry later",
                details={"retry_after": retry_after},
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=error_payload(exc),
                headers={**headers, "Retry-After": str(retry_after)},
            )

        response: Response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response


__all__ = ["InMemoryRateLimiter", "RateLimitMiddleware", "RedisRateLimiter"]
