"""
Redis-backed session store.

Layout (all keys prefixed with KEY_PREFIX):

    session:{session_id}              hash, one field per ChatSession attribute
    session:{session_id}:messages     list of message JSON, append order
    message:{message_id}              session id; marks a message as applied
    user:{owner}:sessions:created     zset of session ids scored by created_at
    user:{owner}:sessions:updated     zset of session ids scored by updated_at

Appends and deletes WATCH the session key, re-read it, then write in one
MULTI/EXEC; a concurrent write aborts the transaction and the operation is
retried against the new state. message_count is bumped with HINCRBY.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from sessiongate.errors import session_not_found
from sessiongate.logging_config import logger
from sessiongate.redis_client import dumps_json, loads_json
from sessiongate.schemas.session import ChatMessage, ChatSession, SortField

from .base import SessionFilter, SessionStore, ensure_owner, to_utc

KEY_PREFIX = "sessiongate"
SESSION_KEY_TEMPLATE = KEY_PREFIX + ":session:{session_id}"
MESSAGES_KEY_TEMPLATE = KEY_PREFIX + ":session:{session_id}:messages"
MESSAGE_KEY_TEMPLATE = KEY_PREFIX + ":message:{message_id}"
CREATED_INDEX_TEMPLATE = KEY_PREFIX + ":user:{owner}:sessions:created"
UPDATED_INDEX_TEMPLATE = KEY_PREFIX + ":user:{owner}:sessions:updated"

REQUIRED_FIELDS = ("session_id", "user_id", "created_at", "updated_at")


def _score(value: dt.datetime) -> float:
    return to_utc(value).timestamp()


def _session_to_hash(session: ChatSession) -> Dict[str, str]:
    return {
        "session_id": session.session_id,
        "user_id": session.user_id,
        "title": session.title,
        "first_message": session.first_message,
        "last_message": session.last_message,
        "message_count": str(session.message_count),
        "created_at": to_utc(session.created_at).isoformat(),
        "updated_at": to_utc(session.updated_at).isoformat(),
        "metadata": dumps_json(session.metadata),
    }


def _session_from_hash(data: Dict[str, str]) -> ChatSession:
    return ChatSession(
        session_id=data["session_id"],
        user_id=data["user_id"],
        title=data.get("title", ""),
        first_message=data.get("first_message", ""),
        last_message=data.get("last_message", ""),
        message_count=int(data.get("message_count", 0)),
        created_at=dt.datetime.fromisoformat(data["created_at"]),
        updated_at=dt.datetime.fromisoformat(data["updated_at"]),
        metadata=loads_json(data.get("metadata"), default={}) or {},
    )


class RedisSessionStore(SessionStore):
    transient_errors = (RedisConnectionError, RedisTimeoutError)

    def __init__(self, redis: Redis, **kwargs) -> None:
        super().__init__(**kwargs)
        self.redis = redis

    async def _load(self, session_id: str, client=None) -> Optional[ChatSession]:
        client = client if client is not None else self.redis
        data = await client.hgetall(SESSION_KEY_TEMPLATE.format(session_id=session_id))
        # A hash without its identity fields is not a session.
        if not data or any(name not in data for name in REQUIRED_FIELDS):
            return None
        return _session_from_hash(data)

    async def _load_owned(self, owner: str, session_id: str, client=None) -> ChatSession:
        session = await self._load(session_id, client)
        if session is None:
            raise session_not_found()
        ensure_owner(session.user_id, owner)
        return session

    async def _create_session(self, session: ChatSession) -> ChatSession:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                SESSION_KEY_TEMPLATE.format(session_id=session.session_id),
                mapping=_session_to_hash(session),
            )
            pipe.zadd(
                CREATED_INDEX_TEMPLATE.format(owner=session.user_id),
                {session.session_id: _score(session.created_at)},
            )
            pipe.zadd(
                UPDATED_INDEX_TEMPLATE.format(owner=session.user_id),
                {session.session_id: _score(session.updated_at)},
            )
            await pipe.execute()
        return session

    async def _list_sessions(self, owner: str, session_filter: SessionFilter) -> List[ChatSession]:
        created_index = CREATED_INDEX_TEMPLATE.format(owner=owner)
        low = _score(session_filter.start_date) if session_filter.start_date else "-inf"
        high = _score(session_filter.end_date) if session_filter.end_date else "+inf"
        descending = session_filter.sort_order == "desc"
        has_range = session_filter.start_date is not None or session_filter.end_date is not None

        if session_filter.sort_by == SortField.CREATED_AT:
            if descending:
                ids = await self.redis.zrevrangebyscore(
                    created_index, high, low, start=0, num=session_filter.limit
                )
            else:
                ids = await self.redis.zrangebyscore(
                    created_index, low, high, start=0, num=session_filter.limit
                )
            return await self._load_many(ids)

        if not has_range:
            ids = await self.redis.zrange(
                UPDATED_INDEX_TEMPLATE.format(owner=owner),
                0,
                session_filter.limit - 1,
                desc=descending,
            )
            return await self._load_many(ids)

        # updated_at ordering within a created_at window
        ids = await self.redis.zrangebyscore(created_index, low, high)
        sessions = await self._load_many(ids)
        sessions.sort(key=lambda s: (s.updated_at, s.session_id), reverse=descending)
        return sessions[: session_filter.limit]

    async def _load_many(self, session_ids: List[str]) -> List[ChatSession]:
        sessions: List[ChatSession] = []
        for session_id in session_ids:
            session = await self._load(session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    async def _get_session(self, session_id: str) -> Optional[ChatSession]:
        return await self._load(session_id)

    async def _get_messages(self, owner: str, session_id: str) -> List[ChatMessage]:
        await self._load_owned(owner, session_id)
        raw_messages = await self.redis.lrange(
            MESSAGES_KEY_TEMPLATE.format(session_id=session_id), 0, -1
        )
        return [ChatMessage.model_validate_json(raw) for raw in raw_messages]

    async def _find_applied(self, message: ChatMessage, client=None) -> Optional[ChatMessage]:
        client = client if client is not None else self.redis
        message_key = MESSAGE_KEY_TEMPLATE.format(message_id=message.id)
        if not await client.exists(message_key):
            return None
        raw_messages = await client.lrange(
            MESSAGES_KEY_TEMPLATE.format(session_id=message.session_id), 0, -1
        )
        for raw in reversed(raw_messages):
            stored = ChatMessage.model_validate_json(raw)
            if stored.id == message.id:
                return stored
        return None

    async def _append_message(self, owner: str, message: ChatMessage) -> ChatMessage:
        session_key = SESSION_KEY_TEMPLATE.format(session_id=message.session_id)
        messages_key = MESSAGES_KEY_TEMPLATE.format(session_id=message.session_id)
        message_key = MESSAGE_KEY_TEMPLATE.format(message_id=message.id)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(session_key, messages_key, message_key)
                    session = await self._load_owned(owner, message.session_id, pipe)

                    applied = await self._find_applied(message, pipe)
                    if applied is not None:
                        await pipe.reset()
                        logger.info("Message %s already stored; skipping duplicate append", message.id)
                        return applied

                    updated_at = max(to_utc(message.timestamp), to_utc(session.updated_at))
                    pipe.multi()
                    pipe.rpush(messages_key, message.model_dump_json(by_alias=True))
                    pipe.set(message_key, message.session_id)
                    pipe.hincrby(session_key, "message_count", 1)
                    pipe.hset(
                        session_key,
                        mapping={"last_message": message.content, "updated_at": updated_at.isoformat()},
                    )
                    pipe.zadd(
                        UPDATED_INDEX_TEMPLATE.format(owner=session.user_id),
                        {message.session_id: _score(updated_at)},
                    )
                    await pipe.execute()
                    return message
                except WatchError:
                    logger.debug("Session %s changed during append; retrying", message.session_id)

    async def _delete_session(self, owner: str, session_id: str) -> None:
        session_key = SESSION_KEY_TEMPLATE.format(session_id=session_id)
        messages_key = MESSAGES_KEY_TEMPLATE.format(session_id=session_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(session_key, messages_key)
                    session = await self._load_owned(owner, session_id, pipe)
                    raw_messages = await pipe.lrange(messages_key, 0, -1)
                    message_keys = [
                        MESSAGE_KEY_TEMPLATE.format(message_id=ChatMessage.model_validate_json(raw).id)
                        for raw in raw_messages
                    ]
                    pipe.multi()
                    pipe.delete(session_key, messages_key, *message_keys)
                    pipe.zrem(CREATED_INDEX_TEMPLATE.format(owner=session.user_id), session_id)
                    pipe.zrem(UPDATED_INDEX_TEMPLATE.format(owner=session.user_id), session_id)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug("Session %s changed during delete; retrying", session_id)


__all__ = ["KEY_PREFIX", "RedisSessionStore"]
