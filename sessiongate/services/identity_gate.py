"""
Single-identity authorization.

Exactly one identity may read or write conversation data. The gate is
consulted when a token is minted and again when a token is verified.
"""

from __future__ import annotations

from typing import Optional

from sessiongate.errors import ConfigurationError, ErrorKind, GatewayError


def normalize_identity(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class IdentityGate:
    def __init__(self, authorized_identity: Optional[str]) -> None:
        normalized = normalize_identity(authorized_identity)
        if not normalized:
            raise ConfigurationError("AUTHORIZED_USER_EMAIL is not configured")
        self._authorized = normalized

    @property
    def authorized_identity(self) -> str:
        return self._authorized

    def is_authorized(self, identity: Optional[str]) -> bool:
        return normalize_identity(identity) == self._authorized

    def authorize(self, identity: Optional[str]) -> str:
        """
        Return the normalized identity, or raise GatewayError(unauthorized_user).
        """
        normalized = normalize_identity(identity)
        if not normalized or normalized != self._authorized:
            raise GatewayError(
                ErrorKind.UNAUTHORIZED_USER,
                "Access is restricted to the authorized user",
            )
        return normalized


__all__ = ["IdentityGate", "normalize_identity"]
