"""File Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from refyn.schemas.base import CamelModel


class FileOut(CamelModel):
    """Metadata for one uploaded file. `filename` is the storage key."""

    id: UUID
    filename: str
    original_name: str
    title: str | None = None
    mime_type: str
    size: int
    session_id: str
    user_id: UUID | None = None
    created_at: datetime
