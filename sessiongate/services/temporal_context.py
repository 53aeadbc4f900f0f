"""
Compose a completion prompt from a temporal query and the caller's sessions.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from sessiongate.logging_config import logger
from sessiongate.schemas.session import ChatSession
from sessiongate.temporal import (
    MIN_TEMPORAL_CONFIDENCE,
    TemporalRange,
    format_temporal_range,
    parse_temporal_query,
)

NO_HISTORY_MESSAGE = (
    "I don't have any conversation history from {period}. "
    "Try a different time range or start a new conversation."
)

PREVIEW_MAX_CHARS = 100

ListSessions = Callable[[dt.datetime, dt.datetime, int], Awaitable[List[ChatSession]]]


@dataclass
class TemporalPrompt:
    prompt: str
    temporal: Optional[TemporalRange] = None
    sessions: List[ChatSession] = field(default_factory=list)
    no_history: bool = False
    reply: Optional[str] = None


def _preview(text: str) -> str:
    text = " ".join((text or "").split())
    if len(text) > PREVIEW_MAX_CHARS:
        return text[:PREVIEW_MAX_CHARS] + "..."
    return text


def summarize_sessions(temporal: TemporalRange, sessions: List[ChatSession]) -> str:
    lines = [f"Conversations from {format_temporal_range(temporal)}:"]
    for session in sessions:
        created = session.created_at
        lines.append(
            f'- "{session.title}" (created {created:%b} {created.day}, {created.year}; '
            f"{session.message_count} messages): {_preview(session.last_message)}"
        )
    return "\n".join(lines)


def augment_query(query: str, context: str) -> str:
    return (
        "Based on the following context information, please answer this question:\n\n"
        f"Context:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Please provide a comprehensive answer using the context information when relevant."
    )


async def build_temporal_prompt(
    query: str,
    *,
    list_sessions: ListSessions,
    now: dt.datetime,
    min_confidence: float = MIN_TEMPORAL_CONFIDENCE,
    limit: int = 20,
) -> TemporalPrompt:
    """
    Parse `query` for a time reference and, when one is found with enough
    confidence, load the sessions created in that range.

    With no matching sessions the result carries `no_history=True` and a
    fixed reply; the caller must not contact the completion provider then.
    """
    temporal = parse_temporal_query(query, now)
    if temporal is None or not temporal.is_actionable(min_confidence):
        return TemporalPrompt(prompt=query, temporal=temporal)

    sessions = await list_sessions(temporal.start_date, temporal.end_date, limit)
    logger.info(
        "Temporal query matched %r: %d session(s) in range",
        temporal.description,
        len(sessions),
    )
    if not sessions:
        return TemporalPrompt(
            prompt=query,
            temporal=temporal,
            no_history=True,
            reply=NO_HISTORY_MESSAGE.format(period=format_temporal_range(temporal)),
        )

    context = summarize_sessions(temporal, sessions)
    return TemporalPrompt(
        prompt=augment_query(query, context),
        temporal=temporal,
        sessions=sessions,
    )


__all__ = [
    "NO_HISTORY_MESSAGE",
    "TemporalPrompt",
    "augment_query",
    "build_temporal_prompt",
    "summarize_sessions",
]
