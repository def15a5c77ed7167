"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from refyn.schemas.base import CamelModel
from refyn.schemas.conversation import (
    AnalyzeRequest,
    AnalyzeResponse,
    ChatRequest,
    ChatResponse,
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationOut,
    ConversationSummaryOut,
    MessageOut,
)
from refyn.schemas.file import FileOut
from refyn.schemas.note import NoteOut
from refyn.schemas.usage import UsageOut

__all__ = [
    "CamelModel",
    # Conversation
    "AnalyzeRequest",
    "AnalyzeResponse",
    "ChatRequest",
    "ChatResponse",
    "ConversationDetailResponse",
    "ConversationListResponse",
    "ConversationOut",
    "ConversationSummaryOut",
    "MessageOut",
    # File
    "FileOut",
    # Note
    "NoteOut",
    # Usage
    "UsageOut",
]
