"""
Bearer token issuing and verification.

Tokens are compact HS256 JWTs: base64url(header).base64url(payload).base64url(sig)
with header {"alg":"HS256","typ":"JWT"} and payload {iss, aud, sub, iat, exp}.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

from jose import jws, jwt
from jose.exceptions import JWSError, JWTError

from sessiongate.errors import ErrorKind, GatewayError
from sessiongate.services.shared_secret import SharedSecret

JWT_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_SECONDS = 300

Clock = Callable[[], float]


@dataclass(frozen=True)
class BearerClaims:
    issuer: str
    audience: str
    subject: str
    issued_at: int
    expires_at: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": self.subject,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: BearerClaims


class TokenIssuer:
    """
    Mint short-lived bearer tokens for an identity that has already been
    verified by the web login and the identity gate.
    """

    def __init__(
        self,
        secret: SharedSecret,
        *,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret = secret
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, identity: str) -> IssuedToken:
        """
        Create a signed access token for `identity`.

        Args:
            identity: normalized identity taken from a verified login

        Returns:
            IssuedToken carrying the compact token and its claims
        """
        if not identity:
            raise ValueError("identity must not be empty")
        now = int(self._clock())
        claims = BearerClaims(
            issuer=self._secret.issuer,
            audience=self._secret.audience,
            subject=identity,
            issued_at=now,
            expires_at=now + self._ttl_seconds,
        )
        token = jwt.encode(claims.to_payload(), self._secret.value, algorithm=JWT_ALGORITHM)
        return IssuedToken(token=token, claims=claims)


class TokenVerifier:
    """
    Stateless verification of bearer tokens against the shared secret.

    Checks run in a fixed order and stop at the first failure:
    structure, signature, issuer/audience/subject claims, expiry.
    """

    def __init__(self, secret: SharedSecret, *, clock: Clock = time.time) -> None:
        self._secret = secret
        self._clock = clock

    def verify(self, token: str) -> BearerClaims:
        """
        Verify `token` and return its claims.

        Raises:
            GatewayError: malformed_token, invalid_signature, invalid_claims
                or expired
        """
        parts = (token or "").split(".")
        if len(parts) != 3 or not all(parts):
            raise GatewayError(ErrorKind.MALFORMED_TOKEN, "Token must have three segments")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise GatewayError(ErrorKind.MALFORMED_TOKEN, "Token segments could not be decoded")

        if header.get("alg") != JWT_ALGORITHM:
            raise GatewayError(ErrorKind.INVALID_SIGNATURE, "Unsupported signing algorithm")

        try:
            payload_bytes = jws.verify(token, self._secret.value, algorithms=[JWT_ALGORITHM])
        except JWSError:
            raise GatewayError(ErrorKind.INVALID_SIGNATURE, "Signature verification failed")

        claims = self._decode_claims(payload_bytes)

        if claims.expires_at <= int(self._clock()):
            raise GatewayError(ErrorKind.EXPIRED, "Token expired")
        return claims

    def _decode_claims(self, payload_bytes: bytes) -> BearerClaims:
        try:
            payload = json.loads(payload_bytes)
        except ValueError:
            raise GatewayError(ErrorKind.INVALID_CLAIMS, "Token payload is not JSON")
        if not isinstance(payload, dict):
            raise GatewayError(ErrorKind.INVALID_CLAIMS, "Token payload must be an object")

        if payload.get("iss") != self._secret.issuer:
            raise GatewayError(ErrorKind.INVALID_CLAIMS, "Invalid issuer")
        if payload.get("aud") != self._secret.audience:
            raise GatewayError(ErrorKind.INVALID_CLAIMS, "Invalid audience")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise GatewayError(ErrorKind.INVALID_CLAIMS, "Missing subject claim")

        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        # bool is an int subclass; reject it explicitly.
        for value in (issued_at, expires_at):
            if not isinstance(value, int) or isinstance(value, bool):
                raise GatewayError(ErrorKind.INVALID_CLAIMS, "iat/exp must be integers")

        return BearerClaims(
            issuer=payload["iss"],
            audience=payload["aud"],
            subject=subject,
            issued_at=issued_at,
            expires_at=expires_at,
        )


__all__ = [
    "BearerClaims",
    "DEFAULT_TOKEN_TTL_SECONDS",
    "IssuedToken",
    "JWT_ALGORITHM",
    "TokenIssuer",
    "TokenVerifier",
]
