"""
Redis client construction shared by the session store and the rate limiter.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from redis.asyncio import Redis

_redis_clients: Dict[str, Redis] = {}


def get_redis_client(redis_url: str) -> Redis:
    """
    Return a lazily-created Redis client for `redis_url`.

    Kept sync so it can be called from create_app as well as from the
    lifespan; the client itself is fully async.
    """
    client = _redis_clients.get(redis_url)
    if client is None:
        client = Redis.from_url(redis_url, decode_responses=True)
        _redis_clients[redis_url] = client
    return client


async def close_redis_clients() -> None:
    while _redis_clients:
        _, client = _redis_clients.popitem()
        await client.aclose()


def dumps_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def loads_json(raw: Optional[str], default: Any = None) -> Any:
    """Decode a JSON field; a missing or malformed payload yields `default`."""
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


__all__ = ["close_redis_clients", "dumps_json", "get_redis_client", "loads_json"]
