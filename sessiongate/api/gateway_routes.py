"""
Gateway role: resolves the caller from the web login, then forwards session
calls to the backend with a freshly minted bearer token, mints tokens for
the web client and runs temporal chat completions.
"""

from __future__ import annotations

import datetime as dt
import json
from typing import Any, AsyncIterator, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from sessiongate.api.auth import require_web_identity
from sessiongate.deps import (
    get_app_settings,
    get_backend_client,
    get_completion_provider,
    get_now,
    get_token_issuer,
)
from sessiongate.errors import ErrorKind
from sessiongate.logging_config import logger
from sessiongate.schemas.session import (
    ChatStreamRequest,
    CreateSessionRequest,
    DeleteSessionRequest,
    SaveMessageRequest,
    TokenResponse,
)
from sessiongate.services.backend_client import BackendClient, BackendResponse
from sessiongate.services.completion_provider import CompletionProvider, ProviderError
from sessiongate.services.temporal_context import TemporalPrompt, build_temporal_prompt
from sessiongate.services.token_service import TokenIssuer
from sessiongate.settings import Settings

router = APIRouter(tags=["gateway"])

LIST_QUERY_PARAMS = ("startDate", "endDate", "limit", "sortBy", "sortOrder")


def _relay(resp: BackendResponse) -> JSONResponse:
    return JSONResponse(status_code=resp.status_code, content=resp.body)


@router.post("/auth/token", response_model=TokenResponse)
async def mint_token(
    identity: str = Depends(require_web_identity),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> TokenResponse:
    issued = issuer.issue(identity)
    logger.info("Minted bearer token (ttl=%ss)", issuer.ttl_seconds)
    return TokenResponse(token=issued.token, expires_at=issued.claims.expires_at)


@router.post("/sessions/create")
async def create_session(
    payload: CreateSessionRequest,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
) -> JSONResponse:
    resp = await backend.request(
        "POST",
        "/api/sessions/create",
        identity=identity,
        json_body={"firstMessage": payload.first_message},
    )
    return _relay(resp)


@router.get("/sessions/list")
async def list_sessions(
    request: Request,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
) -> JSONResponse:
    params = {
        name: request.query_params[name]
        for name in LIST_QUERY_PARAMS
        if name in request.query_params
    }
    resp = await backend.request("GET", "/api/sessions/list", identity=identity, params=params)
    return _relay(resp)


@router.get("/sessions/messages")
async def get_messages(
    request: Request,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
) -> JSONResponse:
    params = {}
    if "sessionId" in request.query_params:
        params["sessionId"] = request.query_params["sessionId"]
    resp = await backend.request(
        "GET", "/api/sessions/messages", identity=identity, params=params
    )
    return _relay(resp)


@router.post("/sessions/save-message")
async def save_message(
    payload: SaveMessageRequest,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
) -> JSONResponse:
    resp = await backend.request(
        "POST",
        "/api/sessions/save-message",
        identity=identity,
        json_body=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    return _relay(resp)


@router.post("/sessions/delete")
async def delete_session(
    payload: DeleteSessionRequest,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
) -> JSONResponse:
    resp = await backend.request(
        "POST",
        "/api/sessions/delete",
        identity=identity,
        json_body={"sessionId": payload.session_id},
    )
    return _relay(resp)


def _sse(payload: Any) -> str:
    if isinstance(payload, str):
        return f"data: {payload}\n\n"
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _context_frame(composed: TemporalPrompt) -> Dict[str, Any]:
    temporal = composed.temporal
    return {
        "type": "context",
        "temporal": {
            "description": temporal.description,
            "startDate": temporal.start_date.isoformat(),
            "endDate": temporal.end_date.isoformat(),
            "confidence": temporal.confidence,
        },
        "sessionCount": len(composed.sessions),
    }


async def _stream_chat(
    composed: TemporalPrompt,
    messages: List[Dict[str, str]],
    provider: CompletionProvider,
) -> AsyncIterator[str]:
    if composed.sessions:
        yield _sse(_context_frame(composed))

    if composed.no_history:
        yield _sse({"type": "content", "content": composed.reply})
        yield _sse("[DONE]")
        return

    try:
        async for chunk in provider.stream(messages):
            yield _sse({"type": "content", "content": chunk})
    except ProviderError as exc:
        # Response has already started; report the failure in-band.
        logger.warning("Completion provider failed: %s", exc.message)
        yield _sse(
            {
                "error": {
                    "type": ErrorKind.PROVIDER_FAILURE.value,
                    "status": exc.status_code,
                    "message": exc.message,
                }
            }
        )
    yield _sse("[DONE]")


@router.post("/chat/stream")
async def chat_stream(
    payload: ChatStreamRequest,
    identity: str = Depends(require_web_identity),
    backend: BackendClient = Depends(get_backend_client),
    provider: CompletionProvider = Depends(get_completion_provider),
    app_settings: Settings = Depends(get_app_settings),
    now: dt.datetime = Depends(get_now),
) -> StreamingResponse:
    async def _list_sessions(start: dt.datetime, end: dt.datetime, limit: int):
        return await backend.list_sessions(identity, start, end, limit)

    composed = await build_temporal_prompt(
        payload.query,
        list_sessions=_list_sessions,
        now=now,
        min_confidence=app_settings.temporal_min_confidence,
        limit=app_settings.temporal_context_limit,
    )

    messages = [{"role": turn.role.value, "content": turn.content} for turn in payload.history]
    messages.append({"role": "user", "content": composed.prompt})

    return StreamingResponse(
        _stream_chat(composed, messages, provider),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


__all__ = ["router"]
