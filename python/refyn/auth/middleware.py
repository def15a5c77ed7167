"""Bearer-token auth for every non-public route.

A request passes when, in order: its path is public; or it carries the
internal header (staging and prod only) and a bearer JWT the verifier
accepts, and the user row bootstrap succeeds. The resulting ``Viewer`` is
stored on ``request.state`` for ``get_viewer``.
"""

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from refyn.auth.verifier import TokenVerifier, require_uuid_sub
from refyn.errors import ApiError, ApiErrorCode
from refyn.logging import get_logger
from refyn.responses import error_response

logger = get_logger(__name__)

INTERNAL_HEADER = "x-refyn-internal"

PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

BootstrapCallback = Callable[[UUID, str | None], None]


@dataclass(frozen=True)
class Viewer:
    user_id: UUID
    email: str | None = None


def _email_claim(claims: dict) -> str | None:
    email = claims.get("email")
    if isinstance(email, str) and "@" in email:
        return email.strip().lower()
    return None


def _reject(code: ApiErrorCode, message: str, reason: str, request: Request) -> ApiError:
    logger.warning("auth_failure", reason=reason, request_path=request.url.path)
    return ApiError(code, message)


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate the caller and bootstrap their user row.

    Args:
        verifier: Checks the bearer JWT and returns its claims.
        requires_internal_header: Demand X-Refyn-Internal (staging and prod).
        internal_secret: Expected X-Refyn-Internal value.
        bootstrap_callback: ``(user_id, email)`` hook that creates or refreshes
            the user row; any exception it raises becomes a 500.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: BootstrapCallback | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            viewer = await self._authenticate(request)
        except ApiError as e:
            return JSONResponse(status_code=e.status_code, content=error_response(e.code, e.message))

        request.state.viewer = viewer
        return await call_next(request)

    async def _authenticate(self, request: Request) -> Viewer:
        if self.requires_internal_header:
            self._check_internal_header(request)

        token = self._bearer_token(request)
        # PyJWKClient may fetch keys over the network
        claims = await run_in_threadpool(self.verifier.verify, token)
        user_id = require_uuid_sub(claims)
        email = _email_claim(claims)

        if self.bootstrap_callback is not None:
            try:
                await run_in_threadpool(self.bootstrap_callback, user_id, email)
            except Exception as e:
                logger.exception("auth.bootstrap_failed", user_id=str(user_id))
                raise ApiError(ApiErrorCode.E_INTERNAL, "Internal server error") from e

        return Viewer(user_id=user_id, email=email)

    def _check_internal_header(self, request: Request) -> None:
        presented = request.headers.get(INTERNAL_HEADER)
        if presented is None:
            raise _reject(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                "internal_header_missing",
                request,
            )
        if not self.internal_secret:
            # Settings validation requires it wherever the header is enforced
            logger.error("auth.internal_secret_missing")
            raise ApiError(ApiErrorCode.E_INTERNAL, "Internal server error")
        if not hmac.compare_digest(presented.encode(), self.internal_secret.encode()):
            raise _reject(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                "internal_header_mismatch",
                request,
            )

    def _bearer_token(self, request: Request) -> str:
        header = request.headers.get("authorization")
        if not header:
            raise _reject(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", "missing_header", request
            )

        scheme, _, token = header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise _reject(
                ApiErrorCode.E_UNAUTHENTICATED,
                "Invalid authorization header format",
                "invalid_header_format",
                request,
            )
        return token


def get_viewer(request: Request) -> Viewer:
    """Dependency for the authenticated viewer.

    Raises:
        ApiError(E_UNAUTHENTICATED): No viewer on the request.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer
