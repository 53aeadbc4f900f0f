"""
Identity dependencies for both app roles.

Backend: the caller proves its identity with a bearer token minted by the
gateway. Gateway: the identity comes from the first-party web login cookie.
In both cases the identity gate has the final word.
"""

from typing import Optional

from fastapi import Depends, Header, Request

from sessiongate.deps import get_identity_gate, get_token_verifier, get_web_login
from sessiongate.errors import ErrorKind, GatewayError
from sessiongate.logging_config import logger
from sessiongate.services.identity_gate import IdentityGate
from sessiongate.services.token_service import TokenVerifier
from sessiongate.services.web_login import WebLoginVerifier


def _get_token_from_headers(authorization: Optional[str] = Header(None)) -> str:
    """
    Extract the bearer token from `Authorization: Bearer <token>`.

    Raises:
        GatewayError: missing_credential when the header is absent or does
            not carry a bearer token
    """
    if not authorization:
        raise GatewayError(ErrorKind.MISSING_CREDENTIAL, "Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise GatewayError(
            ErrorKind.MISSING_CREDENTIAL,
            "Invalid Authorization header, expected 'Bearer <token>'",
        )
    return token.strip()


async def require_bearer_identity(
    token: str = Depends(_get_token_from_headers),
    verifier: TokenVerifier = Depends(get_token_verifier),
    gate: IdentityGate = Depends(get_identity_gate),
) -> str:
    claims = verifier.verify(token)
    identity = gate.authorize(claims.subject)
    logger.debug("Bearer token accepted (exp=%s)", claims.expires_at)
    return identity


async def require_web_identity(
    request: Request,
    web_login: WebLoginVerifier = Depends(get_web_login),
    gate: IdentityGate = Depends(get_identity_gate),
) -> str:
    email = web_login.resolve(request.cookies)
    return gate.authorize(email)


__all__ = ["require_bearer_identity", "require_web_identity"]
