"""
Backend session API. Every route requires a verified bearer identity and
passes it to the store, which enforces ownership.
"""

from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from sessiongate.api.auth import require_bearer_identity
from sessiongate.deps import get_session_store
from sessiongate.errors import ErrorKind, GatewayError, bad_request
from sessiongate.logging_config import logger
from sessiongate.schemas.session import (
    ChatMessage,
    ChatSession,
    CreateSessionRequest,
    DeleteSessionRequest,
    DeleteSessionResponse,
    MessageListResponse,
    SaveMessageRequest,
    SessionListResponse,
    SortField,
)
from sessiongate.services.identity_gate import normalize_identity
from sessiongate.storage.base import SessionFilter, SessionStore, to_utc

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/create", response_model=ChatSession, status_code=status.HTTP_201_CREATED)
async def create_session_endpoint(
    payload: CreateSessionRequest,
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> ChatSession:
    if payload.user_id is not None and normalize_identity(payload.user_id) != identity:
        raise GatewayError(
            ErrorKind.UNAUTHORIZED_USER,
            "Cannot create a session for another user",
        )
    session = await store.create_session(identity, payload.first_message)
    logger.info("Created session %s", session.session_id)
    return session


@router.get("/list", response_model=SessionListResponse)
async def list_sessions_endpoint(
    start_date: Optional[dt.datetime] = Query(None, alias="startDate"),
    end_date: Optional[dt.datetime] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: SortField = Query(SortField.CREATED_AT, alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> SessionListResponse:
    start_date = to_utc(start_date) if start_date is not None else None
    end_date = to_utc(end_date) if end_date is not None else None
    if start_date is not None and end_date is not None and start_date > end_date:
        raise bad_request("startDate must not be after endDate")
    session_filter = SessionFilter(
        start_date=start_date,
        end_date=end_date,
        limit=limit or store.default_limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    sessions = await store.list_sessions(identity, session_filter)
    return SessionListResponse(sessions=sessions, count=len(sessions))


@router.get("/messages", response_model=MessageListResponse)
async def get_messages_endpoint(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> MessageListResponse:
    messages = await store.get_messages(identity, session_id)
    return MessageListResponse(messages=messages, count=len(messages))


@router.post("/save-message", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
async def save_message_endpoint(
    payload: SaveMessageRequest,
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> ChatMessage:
    return await store.append_message(
        identity,
        payload.session_id,
        payload.role,
        payload.content,
        metadata=payload.metadata,
        message_id=payload.message_id,
    )


@router.post("/delete", response_model=DeleteSessionResponse)
async def delete_session_endpoint(
    payload: DeleteSessionRequest,
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> DeleteSessionResponse:
    await store.delete_session(identity, payload.session_id)
    logger.info("Deleted session %s", payload.session_id)
    return DeleteSessionResponse()


@router.get("/{session_id}", response_model=ChatSession)
async def get_session_endpoint(
    session_id: str,
    identity: str = Depends(require_bearer_identity),
    store: SessionStore = Depends(get_session_store),
) -> ChatSession:
    return await store.get_session(identity, session_id)


__all__ = ["router"]
