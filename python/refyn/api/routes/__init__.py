"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from refyn.api.routes.analysis import router as analysis_router
from refyn.api.routes.files import router as files_router
from refyn.api.routes.health import router as health_router
from refyn.api.routes.notes import router as notes_router
from refyn.api.routes.usage import router as usage_router


def create_api_router() -> APIRouter:
    """Create and configure the API router with all routes registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(analysis_router)
    api_router.include_router(files_router)
    api_router.include_router(usage_router)
    api_router.include_router(notes_router)
    return api_router


__all__ = ["create_api_router"]
