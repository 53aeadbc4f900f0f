from __future__ import annotations

from typing import Callable, List, Optional, TypeVar

import anyio
from sqlalchemy import asc, delete, desc, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from sessiongate.db.session import make_session_factory
from sessiongate.errors import session_not_found
from sessiongate.logging_config import logger
from sessiongate.models import Base, ChatMessageRow, ChatSessionRow
from sessiongate.schemas.session import ChatMessage, ChatSession, MessageRole, SortField

from .base import SessionFilter, SessionStore, ensure_owner, to_utc

T = TypeVar("T")


def _session_from_row(row: ChatSessionRow) -> ChatSession:
    return ChatSession(
        session_id=row.session_id,
        user_id=row.user_id,
        title=row.title,
        first_message=row.first_message or "",
        last_message=row.last_message or "",
        message_count=row.message_count or 0,
        created_at=to_utc(row.created_at),
        updated_at=to_utc(row.updated_at),
        metadata=dict(row.meta or {}),
    )


def _message_from_row(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.message_id,
        session_id=row.session_id,
        role=MessageRole(row.role),
        content=row.content,
        timestamp=to_utc(row.created_at),
        metadata=dict(row.meta or {}),
    )


class SqlSessionStore(SessionStore):
    """
    SQLAlchemy-backed store (Postgres in production, SQLite in tests).

    The ORM session is synchronous, so every call runs in a worker thread.
    """

    transient_errors = (OperationalError, InterfaceError)

    def __init__(self, engine: Engine, **kwargs) -> None:
        super().__init__(**kwargs)
        self.engine = engine
        self._session_factory: sessionmaker[Session] = make_session_factory(engine)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    async def _run(self, func: Callable[[], T]) -> T:
        # On timeout the caller stops waiting; the thread finishes on its own,
        # so every write below must be safe to repeat.
        return await anyio.to_thread.run_sync(func, abandon_on_cancel=True)

    async def close(self) -> None:
        self.engine.dispose()

    async def _create_session(self, session: ChatSession) -> ChatSession:
        def _create() -> ChatSession:
            with self._session_factory() as db:
                row = ChatSessionRow(
                    session_id=session.session_id,
                    user_id=session.user_id,
                    title=session.title,
                    first_message=session.first_message,
                    last_message=session.last_message,
                    message_count=session.message_count,
                    created_at=to_utc(session.created_at),
                    updated_at=to_utc(session.updated_at),
                    meta=dict(session.metadata),
                )
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    # An earlier attempt committed after its caller timed out.
                    db.rollback()
                    existing = db.get(ChatSessionRow, session.session_id)
                    if existing is None:
                        raise
                    ensure_owner(existing.user_id, session.user_id)
                    logger.info("Session %s already stored; skipping duplicate create", session.session_id)
                    return _session_from_row(existing)
                return _session_from_row(row)

        return await self._run(_create)

    async def _list_sessions(self, owner: str, session_filter: SessionFilter) -> List[ChatSession]:
        def _list() -> List[ChatSession]:
            column = (
                ChatSessionRow.updated_at
                if session_filter.sort_by == SortField.UPDATED_AT
                else ChatSessionRow.created_at
            )
            order = asc(column) if session_filter.sort_order == "asc" else desc(column)
            stmt = select(ChatSessionRow).where(ChatSessionRow.user_id == owner)
            if session_filter.start_date is not None:
                stmt = stmt.where(ChatSessionRow.created_at >= session_filter.start_date)
            if session_filter.end_date is not None:
                stmt = stmt.where(ChatSessionRow.created_at <= session_filter.end_date)
            stmt = stmt.order_by(order, ChatSessionRow.session_id).limit(session_filter.limit)
            with self._session_factory() as db:
                return [_session_from_row(row) for row in db.execute(stmt).scalars()]

        return await self._run(_list)

    async def _get_session(self, session_id: str) -> Optional[ChatSession]:
        def _get() -> Optional[ChatSession]:
            with self._session_factory() as db:
                row = db.get(ChatSessionRow, session_id)
                return _session_from_row(row) if row is not None else None

        return await self._run(_get)

    async def _get_messages(self, owner: str, session_id: str) -> List[ChatMessage]:
        def _messages() -> List[ChatMessage]:
            with self._session_factory() as db:
                row = db.get(ChatSessionRow, session_id)
                if row is None:
                    raise session_not_found()
                ensure_owner(row.user_id, owner)
                stmt = (
                    select(ChatMessageRow)
                    .where(ChatMessageRow.session_id == session_id)
                    .order_by(ChatMessageRow.created_at.asc(), ChatMessageRow.message_id)
                )
                return [_message_from_row(m) for m in db.execute(stmt).scalars()]

        return await self._run(_messages)

    def _existing_message(self, db: Session, message: ChatMessage) -> Optional[ChatMessage]:
        existing = db.get(ChatMessageRow, message.id)
        if existing is None or existing.session_id != message.session_id:
            return None
        return _message_from_row(existing)

    async def _append_message(self, owner: str, message: ChatMessage) -> ChatMessage:
        def _append() -> ChatMessage:
            timestamp = to_utc(message.timestamp)
            with self._session_factory() as db:
                try:
                    with db.begin():
                        row = db.execute(
                            select(ChatSessionRow)
                            .where(ChatSessionRow.session_id == message.session_id)
                            .with_for_update()
                        ).scalar_one_or_none()
                        if row is None:
                            raise session_not_found()
                        ensure_owner(row.user_id, owner)

                        already = self._existing_message(db, message)
                        if already is not None:
                            return already

                        db.add(
                            ChatMessageRow(
                                message_id=message.id,
                                session_id=message.session_id,
                                role=message.role.value,
                                content=message.content,
                                created_at=timestamp,
                                meta=dict(message.metadata),
                            )
                        )
                        db.execute(
                            update(ChatSessionRow)
                            .where(ChatSessionRow.session_id == message.session_id)
                            .values(
                                message_count=ChatSessionRow.message_count + 1,
                                last_message=message.content,
                                updated_at=timestamp,
                            )
                        )
                except IntegrityError:
                    # A concurrent retry stored the same message id first.
                    db.rollback()
                    already = self._existing_message(db, message)
                    if already is None:
                        raise
                    logger.info("Message %s already stored; skipping duplicate append", message.id)
                    return already
            return message

        return await self._run(_append)

    async def _delete_session(self, owner: str, session_id: str) -> None:
        def _delete() -> None:
            with self._session_factory() as db:
                with db.begin():
                    row = db.get(ChatSessionRow, session_id)
                    if row is None:
                        raise session_not_found()
                    ensure_owner(row.user_id, owner)
                    # SQLite does not enforce ON DELETE CASCADE without a pragma.
                    db.execute(delete(ChatMessageRow).where(ChatMessageRow.session_id == session_id))
                    db.execute(delete(ChatSessionRow).where(ChatSessionRow.session_id == session_id))

        await self._run(_delete)


__all__ = ["SqlSessionStore"]
