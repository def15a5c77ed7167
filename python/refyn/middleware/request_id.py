"""Request correlation ids and the per-request access log line.

The outermost middleware. A caller-supplied X-Request-ID is kept when it is
a short printable token (UUIDs are lowercased); anything else is replaced
with a fresh UUID4. The id is bound into the log context for the duration of
the request and echoed on the response.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from refyn.logging import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_TOKEN_RE = re.compile(r"[A-Za-z0-9._-]+")


def is_valid_request_id(value: str) -> bool:
    return (
        0 < len(value.encode("utf-8")) <= MAX_REQUEST_ID_LENGTH
        and _TOKEN_RE.fullmatch(value) is not None
    )


def normalize_request_id(value: str) -> str:
    if len(value) != 36:
        return value
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return value


def resolve_request_id(incoming: str | None) -> str:
    if incoming and is_valid_request_id(incoming):
        return normalize_request_id(incoming)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            # The unhandled exception handler renders the 500
            logger.exception("request_failed")
            raise
        else:
            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, user_id=str(viewer.user_id))
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
