"""Refyn error codes, their HTTP statuses and the exceptions that carry them."""

from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"

    E_NOT_FOUND = "E_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_FILE_NOT_FOUND = "E_FILE_NOT_FOUND"

    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_NO_FILES = "E_NO_FILES"
    E_INVALID_FILE_TYPE = "E_INVALID_FILE_TYPE"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_TOO_MANY_FILES = "E_TOO_MANY_FILES"

    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"
    E_INTERNAL = "E_INTERNAL"
    E_ANALYSIS_FAILED = "E_ANALYSIS_FAILED"
    E_CHAT_FAILED = "E_CHAT_FAILED"
    E_STORAGE_ERROR = "E_STORAGE_ERROR"


_CODES_BY_STATUS: dict[int, tuple[ApiErrorCode, ...]] = {
    400: (
        ApiErrorCode.E_INVALID_REQUEST,
        ApiErrorCode.E_NO_FILES,
        ApiErrorCode.E_INVALID_FILE_TYPE,
        ApiErrorCode.E_FILE_TOO_LARGE,
        ApiErrorCode.E_TOO_MANY_FILES,
    ),
    401: (ApiErrorCode.E_UNAUTHENTICATED,),
    # Quota exhaustion is a permission problem for the client, not a rate limit
    403: (ApiErrorCode.E_FORBIDDEN, ApiErrorCode.E_INTERNAL_ONLY, ApiErrorCode.E_QUOTA_EXCEEDED),
    404: (
        ApiErrorCode.E_NOT_FOUND,
        ApiErrorCode.E_CONVERSATION_NOT_FOUND,
        ApiErrorCode.E_FILE_NOT_FOUND,
    ),
    500: (
        ApiErrorCode.E_INTERNAL,
        ApiErrorCode.E_ANALYSIS_FAILED,
        ApiErrorCode.E_CHAT_FAILED,
        ApiErrorCode.E_STORAGE_ERROR,
    ),
    503: (ApiErrorCode.E_AUTH_UNAVAILABLE,),
}

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}


class ApiError(Exception):
    """An error the API reports to the client.

    ``details`` are extra envelope fields; ``status_code`` follows from ``code``.
    """

    def __init__(self, code: ApiErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)


class NotFoundError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class QuotaExceededError(ApiError):
    """No conversations left this month; the envelope tells the client to upgrade."""

    def __init__(self, used: int, limit: int):
        self.used = used
        self.limit = limit
        super().__init__(
            ApiErrorCode.E_QUOTA_EXCEEDED,
            f"Monthly conversation limit reached ({used}/{limit}). "
            "Upgrade your plan to start more conversations.",
            details={"used": used, "limit": limit, "needsUpgrade": True},
        )
