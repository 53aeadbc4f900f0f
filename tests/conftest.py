"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import sessiongate`
works consistently in all tests.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sessiongate.db.session import make_engine  # noqa: E402
from sessiongate.services.shared_secret import SharedSecret  # noqa: E402
from sessiongate.storage.redis_store import RedisSessionStore  # noqa: E402
from sessiongate.storage.sql_store import SqlSessionStore  # noqa: E402
from tests.utils import (  # noqa: E402
    FAST_RETRY,
    TEST_AUDIENCE,
    TEST_ISSUER,
    TEST_SECRET,
    InMemoryRedis,
)


@pytest.fixture
def shared_secret() -> SharedSecret:
    return SharedSecret(value=TEST_SECRET, issuer=TEST_ISSUER, audience=TEST_AUDIENCE)


@pytest.fixture
def sql_store():
    store = SqlSessionStore(make_engine("sqlite+pysqlite:///:memory:"), retry_policy=FAST_RETRY)
    store.create_tables()
    yield store
    store.engine.dispose()


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def redis_store(fake_redis: InMemoryRedis) -> RedisSessionStore:
    return RedisSessionStore(fake_redis, retry_policy=FAST_RETRY)


@pytest.fixture(params=["sql", "redis"])
def store(request, sql_store, redis_store):
    """Runs the test once per store implementation."""
    return sql_store if request.param == "sql" else redis_store
