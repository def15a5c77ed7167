"""Refyn application factory.

``create_app()`` wires error handlers, the JSON body guard, the API routes and
(unless a test asks otherwise) bearer-token auth. ``add_request_id_middleware``
must be called last so the request-id layer wraps everything else, auth
rejections included:

    RequestIDMiddleware -> AuthMiddleware -> JSON guard -> routes

The lifespan owns the resources every request shares: one httpx.AsyncClient
(AI providers and Supabase Storage), the LLMRouter, the tiered BlobStore and
the FeedbackConfig. The client is closed on shutdown.
"""

import json
from contextlib import asynccontextmanager
from uuid import UUID

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from refyn.api.routes import create_api_router
from refyn.auth.middleware import AuthMiddleware
from refyn.auth.verifier import SupabaseJwksVerifier
from refyn.config import Settings, get_settings
from refyn.db.session import get_session_factory
from refyn.errors import ApiError, ApiErrorCode
from refyn.logging import configure_logging, get_logger
from refyn.middleware.request_id import RequestIDMiddleware
from refyn.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from refyn.services.bootstrap import ensure_user
from refyn.services.feedback_config import build_feedback_config
from refyn.services.llm import LLMRouter
from refyn.storage import build_blob_store

logger = get_logger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def create_bootstrap_callback():
    """User bootstrap for the auth middleware; each call gets its own session."""
    session_factory = get_session_factory()

    def bootstrap(user_id: UUID, email: str | None) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id, email)
        finally:
            db.close()

    return bootstrap


def create_token_verifier(settings: Settings) -> SupabaseJwksVerifier:
    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


def _new_http_client() -> httpx.AsyncClient:
    # Per-call timeouts are set by the adapters and blob backends
    return httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    client = _new_http_client()

    app.state.httpx_client = client
    app.state.llm_router = LLMRouter(
        client,
        enable_openai=settings.enable_openai,
        enable_gemini=settings.enable_gemini,
    )
    app.state.blob_store = build_blob_store(settings, client)
    app.state.feedback_config = build_feedback_config(settings)

    logger.info(
        "app.resources_initialized",
        enable_openai=settings.enable_openai,
        enable_gemini=settings.enable_gemini,
        blob_tiers=[b.name for b in app.state.blob_store.backends],
        analysis_model=settings.analysis_model,
        notes_model=settings.notes_model,
    )
    try:
        yield
    finally:
        await client.aclose()
        logger.info("app.httpx_client_closed")


async def _invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Wrong types and unparseable path params are client errors, never 422
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
    )


async def _reject_malformed_json(request: Request, call_next):
    """400 for a JSON content-type whose body does not parse."""
    if request.method in BODY_METHODS and "application/json" in request.headers.get(
        "content-type", ""
    ):
        body = await request.body()
        if body:
            try:
                json.loads(body)
            except json.JSONDecodeError:
                return JSONResponse(
                    status_code=400,
                    content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"),
                )
    return await call_next(request)


def _register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, _invalid_request_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
) -> FastAPI:
    """Build the Refyn API.

    Args:
        skip_auth_middleware: Leave auth off; tests add their own.
        token_verifier: Replacement for the Supabase JWKS verifier.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Refyn API",
        description="AI feedback on creative work: analysis, follow-up chat and notes",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    _register_error_handlers(app)
    app.middleware("http")(_reject_malformed_json)
    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(settings),
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.refyn_internal_secret,
            bootstrap_callback=create_bootstrap_callback(),
        )
        logger.info(
            "app.auth_enabled",
            env=settings.refyn_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Install the request-id layer. Call after every other middleware."""
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
