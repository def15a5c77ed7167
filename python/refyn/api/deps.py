"""FastAPI dependencies for route handlers.

Process-wide resources (LLM router, blob store, feedback config) are built in
the application lifespan and read from app.state here.
"""

from fastapi import Request

from refyn.db.session import get_db, get_session_factory
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.llm import LLMRouter
from refyn.storage import BlobStore

__all__ = [
    "get_db",
    "get_session_factory",
    "get_llm_router",
    "get_blob_store",
    "get_feedback_config",
]


def get_llm_router(request: Request) -> LLMRouter:
    """Shared LLMRouter over the lifespan httpx.AsyncClient."""
    return request.app.state.llm_router


def get_blob_store(request: Request) -> BlobStore:
    """Shared tiered BlobStore."""
    return request.app.state.blob_store


def get_feedback_config(request: Request) -> FeedbackConfig:
    """Immutable pipeline configuration built at startup."""
    return request.app.state.feedback_config
