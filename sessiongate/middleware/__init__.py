"""
Security middleware for the gateway and backend apps.
"""

from .origin_guard import OriginGuardMiddleware
from .rate_limiter import InMemoryRateLimiter, RateLimitMiddleware, RedisRateLimiter
from .security_headers import SecurityHeadersMiddleware

__all__ = [
    "InMemoryRateLimiter",
    "OriginGuardMiddleware",
    "RateLimitMiddleware",
    "RedisRateLimiter",
    "SecurityHeadersMiddleware",
]
