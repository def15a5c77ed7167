"""Pytest configuration and fixtures for Refyn tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database (StaticPool, one shared
  connection) with the schema created from the ORM metadata
- Blob storage is two MemoryBlobBackend tiers (primary, fallback)
- Model calls go to FakeLLMRouter; adapter tests use respx instead
- Auth tests use auth_client with MockJwtVerifier tokens
"""

import os

# Settings are read at app creation; give the suite a complete environment
os.environ.setdefault("REFYN_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SUPABASE_JWKS_URL", "http://localhost:54321/auth/v1/.well-known/jwks.json")
os.environ.setdefault("SUPABASE_ISSUER", "test-issuer")
os.environ.setdefault("SUPABASE_AUDIENCES", "test-audience")
os.environ.setdefault("LOG_JSON", "false")

from collections.abc import Generator
from uuid import UUID

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from refyn.api.deps import get_blob_store, get_db, get_feedback_config, get_llm_router
from refyn.app import add_request_id_middleware, create_app
from refyn.auth.middleware import AuthMiddleware
from refyn.config import clear_settings_cache
from refyn.db.models import Base
from refyn.db.session import create_session_factory
from refyn.services.bootstrap import ensure_user
from refyn.services.feedback_config import FeedbackConfig
from refyn.storage import BlobStore, MemoryBlobBackend
from tests.helpers import create_test_user_id
from tests.support.fakes import FakeLLMRouter
from tests.support.test_verifier import MockJwtVerifier

clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Session for seeding and asserting. Call expire_all() after app writes."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def primary_backend() -> MemoryBlobBackend:
    return MemoryBlobBackend("primary")


@pytest.fixture
def fallback_backend() -> MemoryBlobBackend:
    return MemoryBlobBackend("fallback")


@pytest.fixture
def blob_store(primary_backend: MemoryBlobBackend, fallback_backend: MemoryBlobBackend) -> BlobStore:
    return BlobStore([primary_backend, fallback_backend], timeout_s=5)


@pytest.fixture
def fake_router() -> FakeLLMRouter:
    return FakeLLMRouter()


@pytest.fixture
def feedback_config() -> FeedbackConfig:
    return FeedbackConfig(
        analysis_api_key="test-gemini-key",
        notes_api_key="test-openai-key",
        max_upload_bytes=1024 * 1024,
        max_files_per_upload=3,
    )


def _wire_test_resources(
    app: FastAPI,
    session_factory: sessionmaker[Session],
    router: FakeLLMRouter,
    store: BlobStore,
    config: FeedbackConfig,
) -> None:
    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_router] = lambda: router
    app.dependency_overrides[get_blob_store] = lambda: store
    app.dependency_overrides[get_feedback_config] = lambda: config


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication.

    Suitable for public endpoints and basic functionality.
    """
    app = create_app(skip_auth_middleware=True)
    add_request_id_middleware(app, log_requests=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def authenticated_app(
    session_factory: sessionmaker[Session],
    fake_router: FakeLLMRouter,
    blob_store: BlobStore,
    feedback_config: FeedbackConfig,
) -> FastAPI:
    """App with auth middleware using the test verifier and test resources."""

    def bootstrap_callback(user_id: UUID, email: str | None) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id, email)
        finally:
            db.close()

    app = create_app(skip_auth_middleware=True)
    _wire_test_resources(app, session_factory, fake_router, blob_store, feedback_config)
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        requires_internal_header=False,
        internal_secret=None,
        bootstrap_callback=bootstrap_callback,
    )
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def auth_client(authenticated_app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with auth middleware. Use auth_headers() for requests."""
    with TestClient(authenticated_app) as client:
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    return create_test_user_id()
