from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
from jose import jwt
from redis.exceptions import WatchError

from sessiongate.routes import create_app
from sessiongate.services.backend_client import BackendClient
from sessiongate.services.shared_secret import SharedSecret
from sessiongate.services.token_service import TokenIssuer
from sessiongate.settings import Settings
from sessiongate.storage.base import RetryPolicy

TEST_SECRET = "test-shared-secret-0123456789abcdefghij"
TEST_ISSUER = "https://gateway.test"
TEST_AUDIENCE = "session-backend-test"
OWNER_EMAIL = "owner@example.com"
OTHER_EMAIL = "intruder@example.com"
WEB_LOGIN_SECRET = "web-login-secret-for-tests-only"
ALLOWED_ORIGIN = "http://localhost:3000"

FAST_RETRY = RetryPolicy(timeout_seconds=1.0, max_attempts=2, backoff_seconds=0.0)


def make_settings(**overrides: Any) -> Settings:
    """Explicit settings; .env is not read."""
    values: dict[str, Any] = dict(
        environment="test",
        app_role="backend",
        shared_jwt_secret=TEST_SECRET,
        shared_jwt_issuer=TEST_ISSUER,
        shared_jwt_audience=TEST_AUDIENCE,
        authorized_user_email=OWNER_EMAIL,
        web_login_secret=WEB_LOGIN_SECRET,
        cors_allow_origins=ALLOWED_ORIGIN,
        database_url="sqlite+pysqlite:///:memory:",
        auto_create_tables=False,
        store_timeout_seconds=1.0,
        store_max_attempts=2,
        store_retry_backoff_seconds=0.0,
        backend_base_url="http://backend",
        backend_max_attempts=1,
        rate_limit_max_requests=1000,
        verify_backend_secret_on_startup=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_login_cookie(email: str, *, secret: str = WEB_LOGIN_SECRET, ttl: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode({"email": email, "iat": now, "exp": now + ttl}, secret, algorithm="HS256")


def bearer_headers(issuer: TokenIssuer, identity: str = OWNER_EMAIL) -> dict[str, str]:
    return {"Authorization": f"Bearer {issuer.issue(identity).token}"}


def make_backend_app(store, **overrides):
    return create_app(make_settings(app_role="backend", **overrides), session_store=store)


def make_gateway_app(backend_app, *, completion_provider=None, clock=None, **overrides):
    """
    Gateway wired to an in-process backend through httpx.ASGITransport.
    """
    gateway_settings = make_settings(app_role="gateway", **overrides)
    issuer = TokenIssuer(SharedSecret.from_settings(gateway_settings))
    backend_client = BackendClient(
        base_url="http://backend",
        issuer=issuer,
        max_attempts=1,
        client=httpx.AsyncClient(
            transport=httpx.ASGITransport(app=backend_app),
            base_url="http://backend",
        ),
    )
    return create_app(
        gateway_settings,
        backend_client=backend_client,
        completion_provider=completion_provider or FakeCompletionProvider(),
        clock=clock,
    )


class FakeCompletionProvider:
    """Records the messages it was called with and streams canned chunks."""

    def __init__(self, chunks=("Hello", " world"), error=None) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    async def stream(self, messages):
        self.calls.append(messages)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class InMemoryRedis:
    """
    Subset of redis.asyncio.Redis used by the session store and the rate
    limiter.

    Every command outside EXEC yields to the event loop first, so concurrent
    coroutines interleave between commands the way they do against a real
    server. A MULTI/EXEC block runs without yielding, and EXEC fails with
    WatchError when a watched key was written after WATCH.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._lists: dict[str, list[str]] = {}
        self._versions: dict[str, int] = {}
        self._executing = False
        self.commands: list[str] = []

    async def _pause(self) -> None:
        if not self._executing:
            await asyncio.sleep(0)

    def _touch(self, *keys: str) -> None:
        for key in keys:
            self._versions[key] = self._versions.get(key, 0) + 1

    def version(self, key: str) -> int:
        return self._versions.get(key, 0)

    # --- strings ---

    async def get(self, key: str):
        await self._pause()
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None):
        await self._pause()
        self._data[key] = str(value)
        self._touch(key)
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        await self._pause()
        return True

    async def exists(self, *keys: str) -> int:
        await self._pause()
        return sum(
            1
            for key in keys
            if key in self._data or key in self._hashes or key in self._zsets or key in self._lists
        )

    async def delete(self, *keys: str) -> int:
        await self._pause()
        removed = 0
        for key in keys:
            for store in (self._data, self._hashes, self._zsets, self._lists):
                if key in store:
                    store.pop(key)
                    removed += 1
        self._touch(*keys)
        return removed

    # --- hashes ---

    async def hset(self, key: str, field: str | None = None, value: Any = None, mapping=None) -> int:
        await self._pause()
        h = self._hashes.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = sum(1 for f in items if f not in h)
        h.update({f: str(v) for f, v in items.items()})
        self._touch(key)
        return added

    async def hget(self, key: str, field: str):
        await self._pause()
        return self._hashes.get(key, {}).get(field)

    async def hgetall(self, key: str) -> dict[str, str]:
        await self._pause()
        return dict(self._hashes.get(key, {}))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        await self._pause()
        h = self._hashes.setdefault(key, {})
        value = int(h.get(field, 0)) + int(amount)
        h[field] = str(value)
        self._touch(key)
        return value

    # --- sorted sets ---

    async def zadd(self, key: str, mapping: dict[str, float], nx: bool = False) -> int:
        await self._pause()
        self.commands.append("zadd")
        z = self._zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if nx and member in z:
                continue
            if member not in z:
                added += 1
            z[member] = float(score)
        self._touch(key)
        return added

    async def zrem(self, key: str, *members: str) -> int:
        await self._pause()
        z = self._zsets.get(key, {})
        removed = 0
        for member in members:
            if member in z:
                del z[member]
                removed += 1
        self._touch(key)
        return removed

    async def zcard(self, key: str) -> int:
        await self._pause()
        return len(self._zsets.get(key, {}))

    async def zremrangebyscore(self, key: str, min_score, max_score) -> int:
        await self._pause()
        z = self._zsets.get(key, {})
        low, high = float(min_score), float(max_score)
        doomed = [m for m, s in z.items() if low <= s <= high]
        for member in doomed:
            del z[member]
        self._touch(key)
        return len(doomed)

    def _sorted(self, key: str, *, desc: bool = False) -> list[tuple[str, float]]:
        items = sorted(self._zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]))
        return list(reversed(items)) if desc else items

    async def zrange(self, key: str, start: int, end: int, desc: bool = False, withscores: bool = False):
        await self._pause()
        items = self._sorted(key, desc=desc)
        stop = None if end == -1 else end + 1
        window = items[start:stop]
        if withscores:
            return [(m, s) for m, s in window]
        return [m for m, _ in window]

    async def zrangebyscore(self, key: str, min_score, max_score, start=None, num=None, withscores=False):
        await self._pause()
        low, high = float(min_score), float(max_score)
        items = [(m, s) for m, s in self._sorted(key) if low <= s <= high]
        if start is not None and num is not None:
            items = items[start : start + num]
        return [(m, s) for m, s in items] if withscores else [m for m, _ in items]

    async def zrevrangebyscore(self, key: str, max_score, min_score, start=None, num=None, withscores=False):
        await self._pause()
        low, high = float(min_score), float(max_score)
        items = [(m, s) for m, s in self._sorted(key, desc=True) if low <= s <= high]
        if start is not None and num is not None:
            items = items[start : start + num]
        return [(m, s) for m, s in items] if withscores else [m for m, _ in items]

    # --- lists ---

    async def rpush(self, key: str, *values: str) -> int:
        await self._pause()
        lst = self._lists.setdefault(key, [])
        lst.extend(str(v) for v in values)
        self._touch(key)
        return len(lst)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        await self._pause()
        lst = self._lists.get(key, [])
        end = None if stop == -1 else stop + 1
        return list(lst[start:end])

    def pipeline(self, transaction: bool = True) -> "_InMemoryPipeline":
        return _InMemoryPipeline(self)


class _InMemoryPipeline:
    """
    Buffers commands until execute(). After watch() and before multi()
    commands run immediately, as with redis-py.
    """

    def __init__(self, redis: InMemoryRedis) -> None:
        self._redis = redis
        self._queued: list[tuple[str, tuple, dict]] = []
        self._watched: dict[str, int] = {}
        self._explicit_multi = False

    async def __aenter__(self) -> "_InMemoryPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.reset()

    async def watch(self, *keys: str) -> bool:
        await self._redis._pause()
        for key in keys:
            self._watched[key] = self._redis.version(key)
        return True

    def multi(self) -> None:
        self._explicit_multi = True

    async def reset(self) -> None:
        self._queued = []
        self._watched = {}
        self._explicit_multi = False

    def __getattr__(self, name: str):
        if not hasattr(self._redis, name):
            raise AttributeError(name)
        if self._watched and not self._explicit_multi:
            return getattr(self._redis, name)

        def _queue(*args, **kwargs):
            self._queued.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self) -> list[Any]:
        await self._redis._pause()
        queued, watched = self._queued, self._watched
        try:
            if any(self._redis.version(key) != seen for key, seen in watched.items()):
                raise WatchError("Watched variable changed.")
            self._redis._executing = True
            results = []
            for name, args, kwargs in queued:
                results.append(await getattr(self._redis, name)(*args, **kwargs))
            return results
        finally:
            self._redis._executing = False
            await self.reset()


__all__ = [
    "ALLOWED_ORIGIN",
    "FAST_RETRY",
    "FakeCompletionProvider",
    "InMemoryRedis",
    "OTHER_EMAIL",
    "OWNER_EMAIL",
    "TEST_AUDIENCE",
    "TEST_ISSUER",
    "TEST_SECRET",
    "WEB_LOGIN_SECRET",
    "bearer_headers",
    "make_backend_app",
    "make_gateway_app",
    "make_login_cookie",
    "make_settings",
]
