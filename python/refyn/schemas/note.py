"""Note Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from refyn.schemas.base import CamelModel


class NoteOut(CamelModel):
    id: UUID
    user_id: UUID
    conversation_id: UUID | None = None
    title: str
    content: str
    link: str | None = None
    type: str
    category: str
    tags: list[str]
    created_at: datetime
    updated_at: datetime
