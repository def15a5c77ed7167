"""Supabase access-token verification.

``SupabaseJwksVerifier`` runs in every environment. Tests swap in a verifier
backed by a local keypair (tests/support/test_verifier.py).
"""

import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from refyn.errors import ApiError, ApiErrorCode
from refyn.logging import get_logger

logger = get_logger(__name__)

LEEWAY_SECONDS = 60
ALLOWED_ALGORITHMS = ["RS256", "ES256"]
REQUIRED_CLAIMS = ["exp", "iss", "sub"]

# Checked in order; InvalidTokenError is the base class, so it comes last
_REJECTIONS: tuple[tuple[type[Exception], str, str], ...] = (
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
    (InvalidTokenError, "invalid_token", "Invalid token"),
)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Claims of a valid token.

        Raises:
            ApiError(E_UNAUTHENTICATED): Bad, expired or malformed token.
            ApiError(E_AUTH_UNAVAILABLE): Signing keys could not be fetched.
        """
        ...


def _unauthenticated(reason: str, message: str) -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


def require_uuid_sub(claims: dict[str, Any]) -> UUID:
    """The ``sub`` claim as a user id."""
    subject = claims.get("sub")
    if not subject:
        raise _unauthenticated("missing_sub", "Invalid token: missing sub")
    try:
        return UUID(str(subject))
    except ValueError as e:
        raise _unauthenticated("invalid_sub", "Invalid token: sub is not a valid UUID") from e


def _is_unknown_kid(error: PyJWKClientError) -> bool:
    text = str(error)
    return "Unable to find" in text or "kid" in text.lower()


class SupabaseJwksVerifier:
    """Verify tokens against the project's JWKS endpoint.

    Signature (RS256 or ES256), expiry with a minute of leeway, issuer, one of
    the configured audiences and a UUID ``sub`` are all required. A ``kid``
    missing from the cached key set forces one refetch before giving up,
    which covers key rotation.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl
        self._lock = threading.Lock()
        self._client: PyJWKClient | None = None

    def _key_source(self, *, fresh: bool = False) -> PyJWKClient:
        with self._lock:
            if fresh or self._client is None:
                self._client = PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)
            return self._client

    def _signing_key(self, token: str) -> Any:
        try:
            return self._key_source().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if not _is_unknown_kid(e):
                logger.warning("auth_failure", reason="jwks_unavailable")
                raise ApiError(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
                ) from e

        logger.info("auth.jwks_refresh")
        try:
            return self._key_source(fresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            raise _unauthenticated("kid_not_found", "Invalid token: signing key not found") from e

    def verify(self, token: str) -> dict[str, Any]:
        key = self._signing_key(token)
        try:
            claims = jwt.decode(
                token,
                key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=LEEWAY_SECONDS,
                options={"require": REQUIRED_CLAIMS, "verify_aud": True},
            )
        except InvalidTokenError as e:
            reason, message = next(
                (reason, message) for exc_type, reason, message in _REJECTIONS if isinstance(e, exc_type)
            )
            raise _unauthenticated(reason, message) from e

        require_uuid_sub(claims)
        return claims
