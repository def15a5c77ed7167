"""Follow-up chat orchestrator.

Adds one user turn and one AI turn to an existing conversation. The model
sees the full role-labeled transcript plus the session's original files
re-marshaled, so it can still refer to the media and not only the text.
Never touches the usage limiter.

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import time
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.db.models import MessageRole
from refyn.errors import ApiError, ApiErrorCode, InvalidRequestError
from refyn.logging import get_logger, set_pipeline_context
from refyn.schemas import ChatResponse
from refyn.services.analysis import generate_feedback, run_note_extraction
from refyn.services.conversations import (
    append_message,
    get_for_viewer_or_404,
    list_messages,
    message_to_out,
)
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.files import is_visible_to, load_session_files
from refyn.services.llm import (
    LLMCallContext,
    LLMError,
    LLMOperation,
    LLMRouter,
    TextPart,
    Turn,
)
from refyn.services.marshal import marshal_files
from refyn.services.prompts import build_chat_prompt
from refyn.storage import BlobStore

logger = get_logger(__name__)

CHAT_FAILED_MESSAGE = "Failed to process message"


async def send_message(
    db: Session,
    *,
    viewer_id: UUID,
    session_id: str | None,
    message: str | None,
    store: BlobStore,
    router: LLMRouter,
    config: FeedbackConfig,
) -> ChatResponse:
    """Answer a follow-up question on the session's conversation.

    The user message is persisted before the model call and stays persisted
    if the call fails.

    Raises:
        InvalidRequestError: Missing session id or message.
        NotFoundError(E_CONVERSATION_NOT_FOUND): No conversation for the
            session, or it belongs to another user. Nothing is written.
        ApiError(E_CHAT_FAILED): The model call failed.
    """
    session_id = (session_id or "").strip()
    text = (message or "").strip()
    if not session_id or not text:
        raise InvalidRequestError(message="Session ID and message are required")

    set_pipeline_context(session_id=session_id)
    start = time.monotonic()

    conversation = await run_in_threadpool(get_for_viewer_or_404, db, viewer_id, session_id)
    set_pipeline_context(conversation_id=str(conversation.id))

    await run_in_threadpool(append_message, db, conversation.id, MessageRole.user, text)
    history = await run_in_threadpool(list_messages, db, conversation.id)

    files = await run_in_threadpool(load_session_files, db, session_id)
    files = [f for f in files if is_visible_to(f, viewer_id)]
    parts = await marshal_files(files, store, config)

    logger.info("chat.started", history_messages=len(history), parts_sent=len(parts))

    # The conversation's medium keeps governing follow-ups
    turns = [
        Turn.from_text("system", config.prompts.prompt_for(conversation.media_type)),
        Turn(role="user", parts=(TextPart(build_chat_prompt(history, text)), *parts)),
    ]

    try:
        ai_text = await generate_feedback(
            router,
            config,
            turns,
            LLMCallContext(operation=LLMOperation.CHAT, conversation_id=str(conversation.id)),
        )
    except LLMError as e:
        logger.error("chat.failed", error_class=e.error_class.value, provider=e.provider)
        raise ApiError(ApiErrorCode.E_CHAT_FAILED, CHAT_FAILED_MESSAGE) from e

    reply = await run_in_threadpool(append_message, db, conversation.id, MessageRole.ai, ai_text)

    await run_note_extraction(db, conversation, ai_text, router=router, config=config)

    logger.info(
        "chat.completed",
        message_id=str(reply.id),
        latency_ms=int((time.monotonic() - start) * 1000),
    )
    return ChatResponse(message=message_to_out(reply))
