"""
FastAPI dependencies resolving the per-app components built by create_app.
"""

from __future__ import annotations

import datetime as dt

from fastapi import Request

from .errors import ConfigurationError
from .services.backend_client import BackendClient
from .services.completion_provider import CompletionProvider
from .services.identity_gate import IdentityGate
from .services.token_service import TokenIssuer, TokenVerifier
from .services.web_login import WebLoginVerifier
from .settings import Settings
from .storage.base import SessionStore


def _component(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise ConfigurationError(f"{name} is not configured for this app role")
    return value


def get_app_settings(request: Request) -> Settings:
    return _component(request, "settings")


def get_identity_gate(request: Request) -> IdentityGate:
    return _component(request, "identity_gate")


def get_token_verifier(request: Request) -> TokenVerifier:
    return _component(request, "token_verifier")


def get_token_issuer(request: Request) -> TokenIssuer:
    return _component(request, "token_issuer")


def get_web_login(request: Request) -> WebLoginVerifier:
    return _component(request, "web_login")


def get_session_store(request: Request) -> SessionStore:
    return _component(request, "session_store")


def get_backend_client(request: Request) -> BackendClient:
    return _component(request, "backend_client")


def get_completion_provider(request: Request) -> CompletionProvider:
    return _component(request, "completion_provider")


def get_now(request: Request) -> dt.datetime:
    """Current time in the configured temporal timezone."""
    return _component(request, "clock")()


__all__ = [
    "get_app_settings",
    "get_backend_client",
    "get_completion_provider",
    "get_identity_gate",
    "get_now",
    "get_session_store",
    "get_token_issuer",
    "get_token_verifier",
    "get_web_login",
]
