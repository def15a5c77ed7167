"""Note extraction from AI feedback.

After an AI turn is persisted, its text goes to the notes model with a fixed
extraction prompt. The reply is parsed defensively and at most five valid
candidates are stored as ai_extracted notes in one transaction.

Extraction is best-effort: every failure is returned as a StepResult failure
and nothing is written on failure.
"""

import json
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.db.models import Note, NoteCategory, NoteType
from refyn.db.session import transaction
from refyn.logging import get_logger
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.llm import (
    LLMCallContext,
    LLMError,
    LLMOperation,
    LLMRequest,
    LLMRouter,
    Turn,
)
from refyn.services.prompts import NOTE_EXTRACTION_SYSTEM_PROMPT, build_note_extraction_prompt
from refyn.services.results import StepResult

logger = get_logger(__name__)

EXTRACTABLE_CATEGORIES = frozenset(
    {NoteCategory.technique.value, NoteCategory.advice.value, NoteCategory.resource.value}
)
MAX_NOTE_TITLE_LENGTH = 255
MAX_NOTE_LINK_LENGTH = 500


class NotePayloadError(ValueError):
    """Notes model reply is not JSON in one of the accepted shapes."""


@dataclass(frozen=True)
class NoteCandidate:
    title: str
    content: str
    category: str
    link: str | None


def parse_note_payload(text: str | None) -> list[Any]:
    """Pull the raw item list out of the model reply.

    Accepts a bare array, or an object with an "items" or "notes" array.
    Empty text means no items.

    Raises:
        NotePayloadError: If the text is not JSON or has another shape.
    """
    if not text or not text.strip():
        return []
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as e:
        # Deeply nested arrays exhaust the decoder stack
        raise NotePayloadError("reply is not valid JSON") from e

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("items", "notes"):
            value = parsed.get(key)
            if isinstance(value, list):
                return value
        if not parsed:
            return []
    raise NotePayloadError("reply has no items array")


def _clean_link(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    link = value.strip()
    if not link or link.lower() in ("null", "none"):
        return None
    return link[:MAX_NOTE_LINK_LENGTH]


def to_candidate(item: Any) -> NoteCandidate | None:
    """Validate one raw item. Returns None when it must be dropped."""
    if not isinstance(item, dict):
        return None
    title = item.get("title")
    content = item.get("content")
    category = item.get("category")
    if not isinstance(title, str) or not title.strip():
        return None
    if not isinstance(content, str) or not content.strip():
        return None
    if not isinstance(category, str) or category.strip().lower() not in EXTRACTABLE_CATEGORIES:
        return None
    return NoteCandidate(
        title=title.strip()[:MAX_NOTE_TITLE_LENGTH],
        content=content.strip(),
        category=category.strip().lower(),
        link=_clean_link(item.get("link")),
    )


def select_candidates(items: list[Any], max_notes: int) -> list[NoteCandidate]:
    """First `max_notes` valid candidates, in reply order."""
    candidates: list[NoteCandidate] = []
    for item in items:
        candidate = to_candidate(item)
        if candidate is None:
            continue
        candidates.append(candidate)
        if len(candidates) >= max_notes:
            break
    return candidates


def _insert_notes(
    db: Session,
    candidates: list[NoteCandidate],
    conversation_id: UUID,
    user_id: UUID,
) -> list[Note]:
    notes = [
        Note(
            user_id=user_id,
            conversation_id=conversation_id,
            title=c.title,
            content=c.content,
            link=c.link,
            type=NoteType.ai_extracted.value,
            category=c.category,
            tags=[],
        )
        for c in candidates
    ]
    with transaction(db):
        db.add_all(notes)
    return notes


async def extract_notes(
    db: Session,
    ai_response: str,
    conversation_id: UUID,
    user_id: UUID,
    *,
    router: LLMRouter,
    config: FeedbackConfig,
) -> StepResult[list[Note]]:
    """Extract and persist notes from one AI response. Never raises."""
    request = LLMRequest(
        model_name=config.notes_model,
        messages=[
            Turn.from_text("system", NOTE_EXTRACTION_SYSTEM_PROMPT),
            Turn.from_text("user", build_note_extraction_prompt(ai_response, config.max_notes)),
        ],
        max_tokens=config.notes_max_tokens,
        json_response=True,
    )

    try:
        response = await router.generate(
            config.notes_provider,
            request,
            config.notes_api_key,
            timeout_s=config.llm_timeout_s,
            call_context=LLMCallContext(
                operation=LLMOperation.NOTE_EXTRACTION,
                conversation_id=str(conversation_id),
            ),
        )
    except LLMError as e:
        return StepResult.failure(f"model call failed: {e.error_class.value}")
    except Exception as e:
        logger.exception("notes.extract.unexpected_error")
        return StepResult.failure(f"unexpected error: {type(e).__name__}")

    try:
        items = parse_note_payload(response.text)
    except NotePayloadError as e:
        logger.info("notes.extract.unparseable", reason=str(e), response_chars=len(response.text))
        return StepResult.failure(str(e))
    except Exception as e:
        logger.exception("notes.extract.unexpected_error", response_chars=len(response.text))
        return StepResult.failure(f"unexpected error: {type(e).__name__}")

    candidates = select_candidates(items, config.max_notes)
    if not candidates:
        logger.info("notes.extract.empty", items_in=len(items))
        return StepResult.success([])

    try:
        notes = await run_in_threadpool(_insert_notes, db, candidates, conversation_id, user_id)
    except SQLAlchemyError as e:
        return StepResult.failure(f"persist failed: {type(e).__name__}")

    logger.info("notes.extract.saved", items_in=len(items), notes_saved=len(notes))
    return StepResult.success(notes)


def list_notes(
    db: Session,
    user_id: UUID,
    conversation_id: UUID | None = None,
) -> list[Note]:
    """Viewer's notes, newest first, optionally for one conversation."""
    query = select(Note).where(Note.user_id == user_id)
    if conversation_id is not None:
        query = query.where(Note.conversation_id == conversation_id)
    query = query.order_by(Note.created_at.desc(), Note.id)
    return list(db.scalars(query))
