"""
Session Store Adapter interface.

Concrete stores implement the underscore-prefixed operations; the public
methods add ownership-aware error classification plus bounded timeouts and
retries around every call. Ownership is always checked inside the store,
never trusted to the caller.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Type, TypeVar

from sessiongate.errors import ErrorKind, GatewayError, session_not_found
from sessiongate.logging_config import logger
from sessiongate.schemas.session import ChatMessage, ChatSession, MessageRole, SortField
from sessiongate.services.identity_gate import normalize_identity

T = TypeVar("T")

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100
TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New Chat"


@dataclass(frozen=True)
class SessionFilter:
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    limit: int = DEFAULT_LIST_LIMIT
    sort_by: SortField = SortField.CREATED_AT
    sort_order: Literal["asc", "desc"] = "desc"


@dataclass(frozen=True)
class RetryPolicy:
    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.1


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def to_utc(value: dt.datetime) -> dt.datetime:
    """Aware datetimes are converted to UTC; naive ones are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def derive_title(first_message: str) -> str:
    text = (first_message or "").strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


def ensure_owner(owner: str, identity: str) -> None:
    if normalize_identity(owner) != normalize_identity(identity):
        raise GatewayError(
            ErrorKind.OWNERSHIP_MISMATCH,
            "Session does not belong to the authenticated user",
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    policy: RetryPolicy,
    transient_errors: Tuple[Type[BaseException], ...] = (),
) -> T:
    """
    Run `operation` with a per-attempt timeout.

    Timeouts and `transient_errors` are retried up to policy.max_attempts
    with exponential backoff. GatewayError (not found, ownership, ...) is
    deterministic and propagates immediately.
    """
    last_kind = ErrorKind.STORE_TIMEOUT
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
        except GatewayError:
            raise
        except asyncio.TimeoutError:
            last_kind = ErrorKind.STORE_TIMEOUT
            logger.warning(
                "Session store %s timed out after %.2fs (attempt %d/%d)",
                name,
                policy.timeout_seconds,
                attempt,
                policy.max_attempts,
            )
        except transient_errors as exc:
            last_kind = ErrorKind.STORE_UNAVAILABLE
            logger.warning(
                "Session store %s failed (attempt %d/%d): %s",
                name,
                attempt,
                policy.max_attempts,
                exc,
            )
        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.backoff_seconds * (2 ** (attempt - 1)))

    if last_kind is ErrorKind.STORE_TIMEOUT:
        raise GatewayError(ErrorKind.STORE_TIMEOUT, "Session store timed out, try again")
    raise GatewayError(ErrorKind.STORE_UNAVAILABLE, "Session store unavailable, try again")


class SessionStore(ABC):
    """
    Create / list / read / append / delete chat sessions for one owner.
    """

    transient_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        default_limit: int = DEFAULT_LIST_LIMIT,
        max_limit: int = MAX_LIST_LIMIT,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_limit = default_limit
        self.max_limit = max_limit

    async def _call(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            operation,
            name=name,
            policy=self.retry_policy,
            transient_errors=self.transient_errors,
        )

    def _bounded(self, session_filter: Optional[SessionFilter]) -> SessionFilter:
        if session_filter is None:
            return SessionFilter(limit=self.default_limit)
        limit = max(1, min(session_filter.limit, self.max_limit))
        return SessionFilter(
            start_date=to_utc(session_filter.start_date) if session_filter.start_date else None,
            end_date=to_utc(session_filter.end_date) if session_filter.end_date else None,
            limit=limit,
            sort_by=session_filter.sort_by,
            sort_order=session_filter.sort_order,
        )

    async def create_session(self, identity: str, first_message: str = "") -> ChatSession:
        owner = normalize_identity(identity)
        now = utcnow()
        session = ChatSession(
            session_id=new_session_id(),
            user_id=owner,
            title=derive_title(first_message),
            first_message=first_message or "",
            last_message=first_message or "",
            message_count=0,
            created_at=now,
            updated_at=now,
        )
        return await self._call("create_session", lambda: self._create_session(session))

    async def list_sessions(
        self, identity: str, session_filter: Optional[SessionFilter] = None
    ) -> List[ChatSession]:
        owner = normalize_identity(identity)
        bounded = self._bounded(session_filter)
        return await self._call("list_sessions", lambda: self._list_sessions(owner, bounded))

    async def get_session(self, identity: str, session_id: str) -> ChatSession:
        owner = normalize_identity(identity)

        async def _op() -> ChatSession:
            session = await self._get_session(session_id)
            if session is None:
                raise session_not_found()
            ensure_owner(session.user_id, owner)
            return session

        return await self._call("get_session", _op)

    async def get_messages(self, identity: str, session_id: str) -> List[ChatMessage]:
        owner = normalize_identity(identity)
        return await self._call("get_messages", lambda: self._get_messages(owner, session_id))

    async def append_message(
        self,
        identity: str,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
    ) -> ChatMessage:
        """
        Store a message and update the parent session's last_message,
        message_count and updated_at in one atomic store operation.

        The message id is fixed before the first attempt, so a retry after a
        timeout cannot apply the same message twice.
        """
        owner = normalize_identity(identity)
        message = ChatMessage(
            id=message_id or new_message_id(),
            session_id=session_id,
            role=MessageRole(role),
            content=content,
            timestamp=utcnow(),
            metadata=metadata or {},
        )
        return await self._call("append_message", lambda: self._append_message(owner, message))

    async def delete_session(self, identity: str, session_id: str) -> None:
        owner = normalize_identity(identity)
        await self._call("delete_session", lambda: self._delete_session(owner, session_id))

    async def close(self) -> None:
        """Release connections held by the store."""

    @abstractmethod
    async def _create_session(self, session: ChatSession) -> ChatSession:
        ...

    @abstractmethod
    async def _list_sessions(self, owner: str, session_filter: SessionFilter) -> List[ChatSession]:
        ...

    @abstractmethod
    async def _get_session(self, session_id: str) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def _get_messages(self, owner: str, session_id: str) -> List[ChatMessage]:
        ...

    @abstractmethod
    async def _append_message(self, owner: str, message: ChatMessage) -> ChatMessage:
        ...

    @abstractmethod
    async def _delete_session(self, owner: str, session_id: str) -> None:
        ...


__all__ = [
    "DEFAULT_LIST_LIMIT",
    "DEFAULT_TITLE",
    "MAX_LIST_LIMIT",
    "RetryPolicy",
    "SessionFilter",
    "SessionStore",
    "call_with_retry",
    "derive_title",
    "ensure_owner",
    "new_message_id",
    "new_session_id",
    "to_utc",
    "utcnow",
]
