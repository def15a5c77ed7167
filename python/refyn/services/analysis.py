"""Analysis orchestrator.

Turns a session's uploaded files plus the user's context into an AI critique
persisted on the session's conversation.

Flow (strictly sequential):
1. Validate input
2. Quota check, unless the viewer already has the session's conversation
   (nothing is written when refused)
3. Load the session's files
4. Lookup-or-create the conversation (creation consumes one quota unit)
5. Title pass over untitled images (best-effort)
6. Re-load files and marshal them into content parts
7. Prompt = medium system prompt + user context + instruction, then parts
8. Model call (any provider failure fails the request)
9. Persist the "ai" message
10. Note extraction when the conversation has an owner (best-effort)

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import time
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.db.models import Conversation, MessageRole
from refyn.errors import ApiError, ApiErrorCode, InvalidRequestError, QuotaExceededError
from refyn.logging import get_logger, set_pipeline_context
from refyn.schemas import AnalyzeResponse
from refyn.services.conversations import (
    append_message,
    conversation_to_out,
    get_for_viewer,
    lookup_or_create,
    message_to_out,
)
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.files import is_visible_to, load_session_files
from refyn.services.llm import (
    LLMCallContext,
    LLMError,
    LLMErrorClass,
    LLMOperation,
    LLMRequest,
    LLMRouter,
    TextPart,
    Turn,
)
from refyn.services.marshal import marshal_files
from refyn.services.notes import extract_notes
from refyn.services.prompts import build_analysis_prompt
from refyn.services.titles import ensure_titles
from refyn.services.usage import check_and_maybe_reset
from refyn.storage import BlobStore

logger = get_logger(__name__)

ANALYSIS_FAILED_MESSAGE = "Failed to analyze files. Please check your API key and try again."


async def generate_feedback(
    router: LLMRouter,
    config: FeedbackConfig,
    turns: list[Turn],
    call_context: LLMCallContext,
) -> str:
    """One call to the analysis model.

    Raises:
        LLMError: On provider failure, including an empty completion.
    """
    request = LLMRequest(
        model_name=config.analysis_model,
        messages=turns,
        max_tokens=config.analysis_max_tokens,
    )
    response = await router.generate(
        config.analysis_provider,
        request,
        config.analysis_api_key,
        timeout_s=config.llm_timeout_s,
        call_context=call_context,
    )
    if not response.text.strip():
        raise LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            "Provider returned an empty completion",
            provider=config.analysis_provider,
        )
    return response.text


async def run_note_extraction(
    db: Session,
    conversation: Conversation,
    ai_text: str,
    *,
    router: LLMRouter,
    config: FeedbackConfig,
) -> None:
    """Extract notes for the conversation's owner. Failures are logged and dropped."""
    if conversation.user_id is None:
        return
    result = await extract_notes(
        db,
        ai_text,
        conversation.id,
        conversation.user_id,
        router=router,
        config=config,
    )
    if not result.ok:
        logger.warning("notes.extract.failed", error=result.error)


async def analyze(
    db: Session,
    *,
    viewer_id: UUID,
    session_id: str | None,
    context_prompt: str | None,
    media_type: str | None,
    store: BlobStore,
    router: LLMRouter,
    config: FeedbackConfig,
) -> AnalyzeResponse:
    """Run the analysis pipeline for one upload session.

    Raises:
        InvalidRequestError: Missing input (E_INVALID_REQUEST) or no files (E_NO_FILES).
        QuotaExceededError: Monthly conversation quota exhausted and the session
            has no conversation the viewer can see yet.
        NotFoundError: The session's conversation belongs to another user.
        ApiError(E_ANALYSIS_FAILED): The model call failed.
    """
    session_id = (session_id or "").strip()
    context_prompt = (context_prompt or "").strip()
    media_type = (media_type or "").strip()
    if not session_id or not context_prompt or not media_type:
        raise InvalidRequestError(
            message="Session ID, context prompt, and media type are required"
        )

    set_pipeline_context(session_id=session_id)
    start = time.monotonic()

    usage = await run_in_threadpool(check_and_maybe_reset, db, viewer_id, config)
    if not usage.allowed:
        # Re-analyzing an existing conversation consumes no quota
        existing = await run_in_threadpool(get_for_viewer, db, viewer_id, session_id)
        if existing is None:
            logger.info("analysis.quota_refused", used=usage.used, limit=usage.limit)
            raise QuotaExceededError(used=usage.used, limit=usage.limit)

    files = await run_in_threadpool(load_session_files, db, session_id)
    files = [f for f in files if is_visible_to(f, viewer_id)]
    if not files:
        raise InvalidRequestError(ApiErrorCode.E_NO_FILES, "No files found for analysis")

    conversation, created = await run_in_threadpool(
        lookup_or_create,
        db,
        session_id=session_id,
        user_id=viewer_id,
        context_prompt=context_prompt,
        media_type=media_type,
    )
    set_pipeline_context(conversation_id=str(conversation.id))
    logger.info(
        "analysis.started",
        conversation_created=created,
        file_count=len(files),
        media_type=conversation.media_type,
    )

    title_results = await ensure_titles(db, files, store=store, router=router, config=config)
    if title_results:
        logger.info(
            "analysis.titles",
            attempted=len(title_results),
            failed=sum(1 for r in title_results if not r.ok),
        )

    files = await run_in_threadpool(load_session_files, db, session_id)
    files = [f for f in files if is_visible_to(f, viewer_id)]
    parts = await marshal_files(files, store, config)
    if not parts:
        logger.warning("analysis.no_marshaled_parts", file_count=len(files))

    # The medium is fixed when the conversation is created
    prompt = build_analysis_prompt(
        config.prompts.prompt_for(conversation.media_type),
        context_prompt,
        conversation.media_type,
    )
    turns = [Turn(role="user", parts=(TextPart(prompt), *parts))]

    try:
        ai_text = await generate_feedback(
            router,
            config,
            turns,
            LLMCallContext(operation=LLMOperation.ANALYZE, conversation_id=str(conversation.id)),
        )
    except LLMError as e:
        logger.error("analysis.failed", error_class=e.error_class.value, provider=e.provider)
        raise ApiError(ApiErrorCode.E_ANALYSIS_FAILED, ANALYSIS_FAILED_MESSAGE) from e

    message = await run_in_threadpool(append_message, db, conversation.id, MessageRole.ai, ai_text)

    await run_note_extraction(db, conversation, ai_text, router=router, config=config)

    logger.info(
        "analysis.completed",
        message_id=str(message.id),
        parts_sent=len(parts),
        latency_ms=int((time.monotonic() - start) * 1000),
    )
    return AnalyzeResponse(
        conversation=conversation_to_out(conversation),
        message=message_to_out(message),
    )
