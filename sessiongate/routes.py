from __future__ import annotations

import datetime as dt
from contextlib import asynccontextmanager
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import anyio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from . import __version__
from .api.gateway_routes import router as gateway_router
from .api.health_routes import router as health_router
from .api.session_routes import router as session_router
from .db.session import make_engine
from .errors import (
    ConfigurationError,
    GatewayError,
    bad_request,
    error_payload,
    handle_gateway_error,
    handle_unexpected_error,
)
from .logging_config import logger
from .middleware import (
    InMemoryRateLimiter,
    OriginGuardMiddleware,
    RateLimitMiddleware,
    RedisRateLimiter,
    SecurityHeadersMiddleware,
)
from .redis_client import close_redis_clients, get_redis_client
from .services.backend_client import BackendClient
from .services.completion_provider import CompletionProvider, OpenAICompatibleProvider
from .services.identity_gate import IdentityGate
from .services.shared_secret import SharedSecret
from .services.token_service import TokenIssuer, TokenVerifier
from .services.web_login import WebLoginVerifier
from .settings import Settings, settings
from .storage.base import RetryPolicy, SessionStore
from .storage.redis_store import RedisSessionStore
from .storage.sql_store import SqlSessionStore


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    error = bad_request(
        f"Invalid request: {location} {first.get('msg', '')}".strip(),
        details={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]},
    )
    logger.info("Request %s %s rejected: %s", request.method, request.url.path, error.message)
    return JSONResponse(status_code=error.status_code, content=error_payload(error))


def build_session_store(app_settings: Settings) -> SessionStore:
    options = dict(
        retry_policy=RetryPolicy(
            timeout_seconds=app_settings.store_timeout_seconds,
            max_attempts=app_settings.store_max_attempts,
            backoff_seconds=app_settings.store_retry_backoff_seconds,
        ),
        default_limit=app_settings.session_list_default_limit,
        max_limit=app_settings.session_list_max_limit,
    )
    if app_settings.session_store_backend == "redis":
        return RedisSessionStore(get_redis_client(app_settings.redis_url), **options)
    engine = make_engine(
        app_settings.database_url,
        statement_timeout_seconds=app_settings.store_timeout_seconds,
    )
    return SqlSessionStore(engine, **options)


def _make_clock(timezone_name: str) -> Callable[[], dt.datetime]:
    tz = ZoneInfo(timezone_name)
    return lambda: dt.datetime.now(tz)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    startup:
    - backend: create chat tables when AUTO_CREATE_TABLES is on
    - gateway: optionally compare the shared-secret fingerprint with the
      backend's /health and abort on mismatch
    shutdown: close store, backend client and Redis connections
    """
    app_settings: Settings = app.state.settings
    secret: SharedSecret = app.state.shared_secret

    store: Optional[SessionStore] = getattr(app.state, "session_store", None)
    if isinstance(store, SqlSessionStore) and app_settings.auto_create_tables:
        await anyio.to_thread.run_sync(store.create_tables)

    backend: Optional[BackendClient] = getattr(app.state, "backend_client", None)
    if backend is not None and app_settings.verify_backend_secret_on_startup:
        remote = await backend.fetch_secret_fingerprint()
        if not remote:
            raise ConfigurationError("Backend /health did not publish a secret fingerprint")
        secret.ensure_fingerprint(remote, source="backend /health")
        logger.info("Shared secret fingerprint matches backend")

    logger.info(
        "sessiongate %s started (role=%s, fingerprint=%s)",
        __version__,
        app_settings.app_role,
        secret.fingerprint(),
    )

    yield

    if store is not None:
        await store.close()
    if backend is not None:
        await backend.aclose()
    await close_redis_clients()


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    session_store: Optional[SessionStore] = None,
    backend_client: Optional[BackendClient] = None,
    completion_provider: Optional[CompletionProvider] = None,
    rate_limiter: InMemoryRateLimiter | RedisRateLimiter | None = None,
    clock: Optional[Callable[[], dt.datetime]] = None,
) -> FastAPI:
    """
    Build the app for APP_ROLE. Shared-secret and identity configuration are
    validated here, so a misconfigured process fails before serving.
    """
    app_settings = app_settings or settings

    secret = SharedSecret.from_settings(app_settings)
    secret.ensure_fingerprint(app_settings.shared_jwt_fingerprint, source="SHARED_JWT_FINGERPRINT")
    identity_gate = IdentityGate(app_settings.authorized_user_email)

    docs_url = "/docs" if app_settings.enable_api_docs else None
    redoc_url = "/redoc" if app_settings.enable_api_docs else None
    openapi_url = "/openapi.json" if app_settings.enable_api_docs else None

    app = FastAPI(
        title=f"sessiongate ({app_settings.app_role})",
        version=__version__,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.shared_secret = secret
    app.state.identity_gate = identity_gate
    app.state.clock = clock or _make_clock(app_settings.temporal_timezone)

    if app_settings.app_role == "backend":
        app.state.token_verifier = TokenVerifier(secret)
        app.state.session_store = session_store or build_session_store(app_settings)
        app.include_router(session_router)
    else:
        issuer = TokenIssuer(secret, ttl_seconds=app_settings.token_ttl_seconds)
        app.state.token_issuer = issuer
        app.state.web_login = WebLoginVerifier(
            app_settings.web_login_secret,
            cookie_name=app_settings.web_login_cookie_name,
        )
        app.state.backend_client = backend_client or BackendClient(
            base_url=app_settings.backend_base_url,
            issuer=issuer,
            timeout_seconds=app_settings.backend_timeout_seconds,
            max_attempts=app_settings.backend_max_attempts,
        )
        app.state.completion_provider = completion_provider or OpenAICompatibleProvider(
            base_url=app_settings.completion_base_url,
            api_key=app_settings.completion_api_key,
            model=app_settings.completion_model,
            timeout_seconds=app_settings.completion_timeout_seconds,
        )
        app.include_router(gateway_router)
    app.include_router(health_router)

    app.add_exception_handler(GatewayError, handle_gateway_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    if not app_settings.enable_api_docs:
        logger.info(
            "API docs routes are disabled (environment=%s); set ENABLE_API_DOCS=true to enable.",
            app_settings.environment,
        )

    # add_middleware prepends, so the last one added runs first:
    # OriginGuard -> CORS -> RateLimit -> SecurityHeaders -> routes
    app.add_middleware(
        SecurityHeadersMiddleware,
        enable_hsts=app_settings.is_production,
    )

    redis_client: Optional[Redis] = None
    if rate_limiter is None and app_settings.rate_limit_backend == "redis":
        redis_client = get_redis_client(app_settings.redis_url)
    app.add_middleware(
        RateLimitMiddleware,
        redis_client=redis_client,
        limiter=rate_limiter,
        default_max_requests=app_settings.rate_limit_max_requests,
        default_window_seconds=app_settings.rate_limit_window_seconds,
        trusted_proxy_hops=app_settings.rate_limit_trusted_proxy_hops,
        path_limits={"/auth/token": (max(1, app_settings.rate_limit_max_requests // 5), 60)},
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=app_settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.add_middleware(
        OriginGuardMiddleware,
        allowed_origins=app_settings.cors_origins,
        allow_missing_origin=app_settings.cors_allow_missing_origin,
    )

    return app


__all__ = ["build_session_store", "create_app", "lifespan"]
