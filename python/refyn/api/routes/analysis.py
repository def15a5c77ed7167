"""Analysis, chat and conversation history routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from refyn.api.deps import get_blob_store, get_db, get_feedback_config, get_llm_router
from refyn.auth.middleware import Viewer, get_viewer
from refyn.responses import success_response
from refyn.schemas import (
    AnalyzeRequest,
    ChatRequest,
    ConversationDetailResponse,
    ConversationListResponse,
)
from refyn.services import analysis as analysis_service
from refyn.services import chat as chat_service
from refyn.services import conversations as conversations_service
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.llm import LLMRouter
from refyn.storage import BlobStore

router = APIRouter(prefix="/api", tags=["analysis"])


@router.post("/analyze")
async def analyze(
    body: AnalyzeRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    config: Annotated[FeedbackConfig, Depends(get_feedback_config)],
) -> dict:
    """Analyze a session's uploaded files.

    Errors:
        E_INVALID_REQUEST (400): sessionId, contextPrompt or mediaType missing.
        E_NO_FILES (400): The session has no files.
        E_QUOTA_EXCEEDED (403): Monthly conversation limit reached.
        E_CONVERSATION_NOT_FOUND (404): Session belongs to another user.
        E_ANALYSIS_FAILED (500): The model call failed.
    """
    result = await analysis_service.analyze(
        db,
        viewer_id=viewer.user_id,
        session_id=body.session_id,
        context_prompt=body.context_prompt,
        media_type=body.media_type,
        store=store,
        router=llm_router,
        config=config,
    )
    return success_response(result.to_api())


@router.post("/chat")
async def chat(
    body: ChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    config: Annotated[FeedbackConfig, Depends(get_feedback_config)],
) -> dict:
    """Ask a follow-up question about an analyzed session.

    Errors:
        E_INVALID_REQUEST (400): sessionId or message missing.
        E_CONVERSATION_NOT_FOUND (404): No conversation for the session.
        E_CHAT_FAILED (500): The model call failed.
    """
    result = await chat_service.send_message(
        db,
        viewer_id=viewer.user_id,
        session_id=body.session_id,
        message=body.message,
        store=store,
        router=llm_router,
        config=config,
    )
    return success_response(result.to_api())


@router.get("/conversation/{session_id}")
def get_conversation(
    session_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Conversation and messages for a session; conversation is null when absent."""
    conversation, messages = conversations_service.get_conversation_detail(
        db, viewer.user_id, session_id
    )
    return success_response(
        ConversationDetailResponse(conversation=conversation, messages=messages).to_api()
    )


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Viewer's conversations, newest first, with file and message counts."""
    conversations = conversations_service.list_for_user(db, viewer.user_id)
    return success_response(ConversationListResponse(conversations=conversations).to_api())
