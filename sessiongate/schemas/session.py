"""
Session / message schemas shared by the store adapters and both routers.

Wire names are camelCase (sessionId, messageCount, ...); Python attributes
are snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SortField(str, Enum):
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class ChatSession(CamelModel):
    """Conversation summary row."""
    session_id: str = Field(..., description="Opaque session id")
    user_id: str = Field(..., description="Owner identity (normalized email)")
    title: str = Field(..., description="Title derived from the first message")
    first_message: str = Field("", description="First user message")
    last_message: str = Field("", description="Most recent message content")
    message_count: int = Field(0, ge=0, description="Messages stored in the session")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    updated_at: datetime = Field(..., description="Last append time (UTC)")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(CamelModel):
    """Append-only message."""
    id: str = Field(..., description="Message id")
    session_id: str = Field(..., description="Parent session id")
    role: MessageRole
    content: str
    timestamp: datetime = Field(..., description="Creation time (UTC)")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CreateSessionRequest(CamelModel):
    first_message: str = Field("", max_length=100_000)
    # Accepted for compatibility with older clients; must match the caller if sent.
    user_id: Optional[str] = None


class SaveMessageRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    role: MessageRole
    content: str = Field(..., min_length=1, max_length=100_000)
    metadata: Optional[Dict[str, Any]] = None
    message_id: Optional[str] = Field(None, min_length=1, max_length=255)


class DeleteSessionRequest(CamelModel):
    session_id: str = Field(..., min_length=1)


class SessionListResponse(CamelModel):
    sessions: List[ChatSession]
    count: int


class MessageListResponse(CamelModel):
    messages: List[ChatMessage]
    count: int


class DeleteSessionResponse(CamelModel):
    success: bool = True
    message: str = "Session deleted successfully"


class TokenResponse(CamelModel):
    token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_at: int = Field(..., description="Expiry (epoch seconds)")


class ChatTurn(CamelModel):
    role: MessageRole
    content: str


class ChatStreamRequest(CamelModel):
    query: str = Field(..., min_length=1, max_length=20_000)
    history: List[ChatTurn] = Field(default_factory=list, max_length=50)


__all__ = [
    "CamelModel",
    "ChatMessage",
    "ChatSession",
    "ChatStreamRequest",
    "ChatTurn",
    "CreateSessionRequest",
    "DeleteSessionRequest",
    "DeleteSessionResponse",
    "MessageListResponse",
    "MessageRole",
    "SaveMessageRequest",
    "SessionListResponse",
    "SortField",
    "TokenResponse",
]
