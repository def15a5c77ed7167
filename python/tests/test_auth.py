"""Integration tests for authentication middleware and bootstrap.

Tests the full auth flow including:
- Bearer token validation
- Internal header enforcement
- User bootstrap (row creation, email refresh)
- Public paths
- SupabaseJwksVerifier claim checks against a local keypair
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from refyn.app import add_request_id_middleware, create_app
from refyn.auth.middleware import AuthMiddleware
from refyn.auth.verifier import SupabaseJwksVerifier, require_uuid_sub
from refyn.db.models import User
from refyn.errors import ApiError, ApiErrorCode
from refyn.services.bootstrap import ensure_user
from tests.helpers import (
    auth_headers,
    create_test_user_id,
    mint_expired_token,
    mint_test_token,
    mint_token_with_bad_signature,
)
from tests.support.test_verifier import MockJwtVerifier


class TestAuthBoundary:
    """Unauthenticated requests are rejected with E_UNAUTHENTICATED."""

    def test_no_authorization_header(self, auth_client):
        response = auth_client.get("/api/usage")

        assert response.status_code == 401
        data = response.json()
        assert data["error"]["code"] == "E_UNAUTHENTICATED"
        assert "authentication" in data["error"]["message"].lower()

    def test_wrong_authorization_format(self, auth_client):
        response = auth_client.get("/api/usage", headers={"Authorization": "Basic abc123"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_empty_bearer_token(self, auth_client):
        response = auth_client.get("/api/usage", headers={"Authorization": "Bearer "})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid authorization header format"

    def test_invalid_token_bad_signature(self, auth_client):
        token = mint_token_with_bad_signature(create_test_user_id())

        response = auth_client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_expired_token(self, auth_client):
        token = mint_expired_token(create_test_user_id())

        response = auth_client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token expired"

    def test_wrong_audience(self, auth_client):
        token = mint_test_token(create_test_user_id(), audience="someone-else")

        response = auth_client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_non_uuid_subject(self, auth_client):
        token = mint_test_token("not-a-uuid")

        response = auth_client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert "sub" in response.json()["error"]["message"]

    def test_valid_token_passes(self, auth_client):
        response = auth_client.get("/api/usage", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 200


class TestInternalHeaderEnforcement:
    """Tests for internal header enforcement in staging/prod mode."""

    @pytest.fixture
    def staging_client(self, authenticated_app, session_factory):
        """Same wiring as auth_client, but the internal header is required."""

        def bootstrap_callback(user_id: UUID, email: str | None) -> None:
            db = session_factory()
            try:
                ensure_user(db, user_id, email)
            finally:
                db.close()

        app = create_app(skip_auth_middleware=True)
        app.dependency_overrides.update(authenticated_app.dependency_overrides)
        app.add_middleware(
            AuthMiddleware,
            verifier=MockJwtVerifier(),
            requires_internal_header=True,
            internal_secret="test-internal-secret",
            bootstrap_callback=bootstrap_callback,
        )
        add_request_id_middleware(app, log_requests=False)
        with TestClient(app) as client:
            yield client

    def test_missing_internal_header(self, staging_client):
        response = staging_client.get("/api/usage", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"

    def test_wrong_internal_header_value(self, staging_client):
        headers = auth_headers(create_test_user_id())
        headers["X-Refyn-Internal"] = "wrong-secret"

        response = staging_client.get("/api/usage", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"

    def test_correct_internal_header(self, staging_client):
        headers = auth_headers(create_test_user_id())
        headers["X-Refyn-Internal"] = "test-internal-secret"

        response = staging_client.get("/api/usage", headers=headers)

        assert response.status_code == 200

    def test_health_skips_internal_header(self, staging_client):
        response = staging_client.get("/health")

        assert response.status_code == 200


class TestBootstrap:
    """First authenticated request creates the user row."""

    def test_first_request_creates_user(self, auth_client, db_session):
        user_id = create_test_user_id()
        assert db_session.get(User, user_id) is None

        response = auth_client.get("/api/usage", headers=auth_headers(user_id))

        assert response.status_code == 200
        db_session.expire_all()
        user = db_session.get(User, user_id)
        assert user is not None
        assert user.subscription_plan == "free"
        assert user.conversations_this_month == 0

    def test_email_claim_is_lowercased(self, auth_client, db_session):
        user_id = create_test_user_id()

        auth_client.get("/api/usage", headers=auth_headers(user_id, email="Artist@Example.COM"))

        db_session.expire_all()
        assert db_session.get(User, user_id).email == "artist@example.com"

    def test_repeat_requests_keep_one_row(self, auth_client, db_session):
        user_id = create_test_user_id()

        for _ in range(3):
            assert auth_client.get("/api/usage", headers=auth_headers(user_id)).status_code == 200

        db_session.expire_all()
        assert db_session.query(User).filter(User.id == user_id).count() == 1

    def test_bootstrap_failure_returns_500(self, authenticated_app):
        def failing_bootstrap(user_id: UUID, email: str | None) -> None:
            raise RuntimeError("database unavailable")

        app = create_app(skip_auth_middleware=True)
        app.dependency_overrides.update(authenticated_app.dependency_overrides)
        app.add_middleware(
            AuthMiddleware,
            verifier=MockJwtVerifier(),
            bootstrap_callback=failing_bootstrap,
        )
        add_request_id_middleware(app, log_requests=False)

        with TestClient(app) as client:
            response = client.get("/api/usage", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"


class TestHealthEndpointNoAuth:
    def test_health_no_auth_required(self, auth_client):
        response = auth_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok"}}


class TestRequireUuidSub:
    def test_valid(self):
        user_id = create_test_user_id()
        assert require_uuid_sub({"sub": str(user_id)}) == user_id

    def test_missing(self):
        with pytest.raises(ApiError) as exc_info:
            require_uuid_sub({})
        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED

    def test_not_uuid(self):
        with pytest.raises(ApiError) as exc_info:
            require_uuid_sub({"sub": "user-123"})
        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED


class _SigningKey:
    def __init__(self, key: bytes):
        self.key = key


class _StaticJwkClient:
    """Stands in for PyJWKClient with the local test keypair."""

    def get_signing_key_from_jwt(self, token: str) -> _SigningKey:
        return _SigningKey(MockJwtVerifier.get_public_key())


class TestSupabaseJwksVerifier:
    @pytest.fixture
    def verifier(self):
        verifier = SupabaseJwksVerifier(
            jwks_url="http://localhost:54321/auth/v1/.well-known/jwks.json",
            issuer="test-issuer/",
            audiences=["test-audience", "authenticated"],
        )
        verifier._client = _StaticJwkClient()
        return verifier

    def test_issuer_trailing_slash_stripped(self, verifier):
        assert verifier.issuer == "test-issuer"

    def test_valid_token(self, verifier):
        user_id = create_test_user_id()

        claims = verifier.verify(mint_test_token(user_id, email="a@b.com"))

        assert claims["sub"] == str(user_id)
        assert claims["email"] == "a@b.com"

    def test_any_listed_audience_accepted(self, verifier):
        claims = verifier.verify(mint_test_token(create_test_user_id(), audience="authenticated"))

        assert claims["aud"] == "authenticated"

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"expires_in": -3600}, "Token expired"),
            ({"issuer": "other-issuer"}, "Invalid token issuer"),
            ({"audience": "other-audience"}, "Invalid token audience"),
        ],
    )
    def test_rejected_claims(self, verifier, kwargs, message):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify(mint_test_token(create_test_user_id(), **kwargs))

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
        assert exc_info.value.message == message

    def test_bad_signature(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify(mint_token_with_bad_signature(create_test_user_id()))

        assert exc_info.value.message == "Invalid token signature"
