from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped

from .base import Base

JSONCompat = JSON().with_variant(JSONB(), "postgresql")


class ChatSessionRow(Base):
    """One conversation owned by a single user."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("ix_chat_sessions_user_created", "user_id", "created_at"),
        Index("ix_chat_sessions_user_updated", "user_id", "updated_at"),
    )

    session_id: Mapped[str] = Column(String(255), primary_key=True)
    user_id: Mapped[str] = Column(String(255), nullable=False, index=True)
    title: Mapped[str] = Column(Text, nullable=False)
    first_message: Mapped[str] = Column(Text, nullable=False, default="")
    last_message: Mapped[str] = Column(Text, nullable=False, default="")
    message_count: Mapped[int] = Column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    created_at: Mapped[dt.datetime] = Column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[dt.datetime] = Column(DateTime(timezone=True), nullable=False)
    # "metadata" is reserved on declarative classes.
    meta: Mapped[dict[str, Any]] = Column("metadata", JSONCompat, nullable=False, default=dict)


class ChatMessageRow(Base):
    """Append-only message; removed together with its session."""

    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)

    message_id: Mapped[str] = Column(String(255), primary_key=True)
    session_id: Mapped[str] = Column(
        String(255),
        ForeignKey("chat_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = Column(String(20), nullable=False)
    content: Mapped[str] = Column(Text, nullable=False)
    created_at: Mapped[dt.datetime] = Column(DateTime(timezone=True), nullable=False)
    meta: Mapped[dict[str, Any]] = Column("metadata", JSONCompat, nullable=False, default=dict)


__all__ = ["ChatMessageRow", "ChatSessionRow"]
