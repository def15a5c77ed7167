"""Note routes (read-only)."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from refyn.api.deps import get_db
from refyn.auth.middleware import Viewer, get_viewer
from refyn.responses import success_response
from refyn.schemas import NoteOut
from refyn.services import notes as notes_service

router = APIRouter(prefix="/api", tags=["notes"])


@router.get("/notes")
def list_notes(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    conversation_id: Annotated[UUID | None, Query(alias="conversationId")] = None,
) -> dict:
    """Viewer's notes, newest first, optionally filtered to one conversation."""
    notes = notes_service.list_notes(db, viewer.user_id, conversation_id)
    return success_response({"notes": [NoteOut.model_validate(n).to_api() for n in notes]})
