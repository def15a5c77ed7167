"""Conversation, message and analysis Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from refyn.schemas.base import CamelModel
from refyn.schemas.file import FileOut

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "ai"]


# =============================================================================
# Request Schemas
# =============================================================================


class AnalyzeRequest(CamelModel):
    """Request body for POST /api/analyze.

    Fields are optional at the schema level so missing values produce the
    service's own validation message rather than a generic 422.
    """

    session_id: str | None = None
    context_prompt: str | None = None
    media_type: str | None = None


class ChatRequest(CamelModel):
    """Request body for POST /api/chat."""

    session_id: str | None = None
    message: str | None = None


# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(CamelModel):
    """Response schema for a conversation."""

    id: UUID
    session_id: str
    user_id: UUID | None = None
    context_prompt: str
    media_type: str
    created_at: datetime


class MessageOut(CamelModel):
    """Response schema for a message. Messages are ordered by seq."""

    id: UUID
    conversation_id: UUID
    seq: int
    role: MESSAGE_ROLES
    content: str
    created_at: datetime


class ConversationSummaryOut(ConversationOut):
    """A conversation in the viewer's history list."""

    file_count: int
    message_count: int
    files: list[FileOut]


class AnalyzeResponse(CamelModel):
    conversation: ConversationOut
    message: MessageOut


class ChatResponse(CamelModel):
    message: MessageOut


class ConversationDetailResponse(CamelModel):
    conversation: ConversationOut | None = None
    messages: list[MessageOut]


class ConversationListResponse(CamelModel):
    conversations: list[ConversationSummaryOut]
