"""
First-party web login resolution for the gateway role.

The external login system signs its session cookie as an HS256 JWT that
carries the user's email. This is the only place the gateway learns who the
caller is; request bodies and query strings are never consulted.
"""

from __future__ import annotations

from typing import Mapping, Optional

from jose import jwt
from jose.exceptions import JWTError

from sessiongate.errors import ConfigurationError, ErrorKind, GatewayError

LOGIN_ALGORITHM = "HS256"


class WebLoginVerifier:
    def __init__(self, secret: Optional[str], *, cookie_name: str = "session-token") -> None:
        if not secret:
            raise ConfigurationError("WEB_LOGIN_SECRET is not configured")
        self._secret = secret
        self.cookie_name = cookie_name

    def resolve(self, cookies: Mapping[str, str]) -> str:
        """
        Return the email carried by the login cookie.

        Raises:
            GatewayError: missing_credential when no cookie is present,
                invalid_login when it cannot be verified
        """
        raw = cookies.get(self.cookie_name)
        if not raw:
            raise GatewayError(ErrorKind.MISSING_CREDENTIAL, "Not signed in")
        try:
            claims = jwt.decode(
                raw,
                self._secret,
                algorithms=[LOGIN_ALGORITHM],
                options={"verify_aud": False},
            )
        except JWTError:
            raise GatewayError(ErrorKind.INVALID_LOGIN, "Login session is invalid or expired")

        email = claims.get("email")
        if not isinstance(email, str) or not email.strip():
            raise GatewayError(ErrorKind.INVALID_LOGIN, "Login session has no email")
        return email


__all__ = ["LOGIN_ALGORITHM", "WebLoginVerifier"]
