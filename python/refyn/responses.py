"""JSON envelopes and the exception handlers that produce them.

    {"data": ...}
    {"error": {"code": "E_...", "message": "...", "request_id": "...", **details}}

Detail fields (the quota numbers, for instance) sit beside code and message;
they never replace either.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from refyn.errors import ApiError, ApiErrorCode
from refyn.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method) mapped onto ours
HTTP_STATUS_CODES: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build an error envelope.

    ``request_id`` defaults to the one bound for the current request, and is
    left out entirely outside a request.
    """
    body: dict[str, Any] = dict(details or {})
    body["code"] = code.value
    body["message"] = message

    request_id = request_id or get_request_id()
    if request_id:
        body["request_id"] = request_id
    return {"error": body}


def _json_error(status_code: int, code: ApiErrorCode, message: str, **kwargs: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message, **kwargs))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _json_error(exc.status_code, exc.code, exc.message, details=exc.details)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _json_error(exc.status_code, code, str(exc.detail or "An error occurred"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with a fixed message; the traceback only goes to the log."""
    logger.exception("request.unhandled_exception", error_type=type(exc).__name__, path=request.url.path)
    return _json_error(500, ApiErrorCode.E_INTERNAL, "Internal server error")
