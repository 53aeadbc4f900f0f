from .base import RetryPolicy, SessionFilter, SessionStore, call_with_retry
from .redis_store import RedisSessionStore
from .sql_store import SqlSessionStore

__all__ = [
    "RedisSessionStore",
    "RetryPolicy",
    "SessionFilter",
    "SessionStore",
    "SqlSessionStore",
    "call_with_retry",
]
