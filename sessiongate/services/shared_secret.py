"""
Shared signing secret used by both the gateway (issuer) and the backend
(verifier).

The secret is loaded once from a single configuration source and passed
explicitly into TokenIssuer / TokenVerifier. Both sides publish a
fingerprint so a desynchronised deployment is caught at startup instead of
surfacing as a stream of 403s.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field

from sessiongate.errors import ConfigurationError
from sessiongate.settings import Settings

MIN_SECRET_BYTES = 32
_FINGERPRINT_LENGTH = 16


@dataclass(frozen=True)
class SharedSecret:
    value: str = field(repr=False)
    issuer: str
    audience: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ConfigurationError("SHARED_JWT_SECRET is not configured")
        if len(self.value.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"SHARED_JWT_SECRET must be at least {MIN_SECRET_BYTES} bytes"
            )
        if not self.issuer or not self.audience:
            raise ConfigurationError("SHARED_JWT_ISS and SHARED_JWT_AUD must be set")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SharedSecret":
        return cls(
            value=settings.shared_jwt_secret or "",
            issuer=settings.shared_jwt_issuer,
            audience=settings.shared_jwt_audience,
        )

    def fingerprint(self) -> str:
        """
        Short digest of (secret, issuer, audience). Safe to expose: it is an
        HMAC keyed by the secret, so it cannot be inverted into the secret.
        """
        message = f"fingerprint|{self.issuer}|{self.audience}".encode("utf-8")
        digest = hmac.new(self.value.encode("utf-8"), message, hashlib.sha256)
        return digest.hexdigest()[:_FINGERPRINT_LENGTH]

    def ensure_fingerprint(self, expected: str | None, *, source: str) -> None:
        """
        Raise ConfigurationError when `expected` is set and differs from the
        local fingerprint.
        """
        if not expected:
            return
        if not hmac.compare_digest(expected.strip().lower(), self.fingerprint()):
            raise ConfigurationError(
                f"Shared secret mismatch: local fingerprint differs from {source}"
            )


__all__ = ["MIN_SECRET_BYTES", "SharedSecret"]
