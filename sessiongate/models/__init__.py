from .base import Base
from .chat import ChatMessageRow, ChatSessionRow

__all__ = ["Base", "ChatMessageRow", "ChatSessionRow"]
