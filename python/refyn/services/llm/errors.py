"""Provider failures folded into one small set of error classes.

The router is the only caller: adapters let raw httpx errors escape and the
router turns them into an ``LLMError`` via ``classify_provider_error``. The
analysis and chat services only ever see ``LLMError``.
"""

from enum import Enum

import httpx

from refyn.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class LLMError(Exception):
    """A failed model call.

    ``message`` is for logs only; users see the service-level fallback text.
    """

    def __init__(self, error_class: LLMErrorClass, message: str, provider: str | None = None):
        super().__init__(message)
        self.error_class = error_class
        self.message = message
        self.provider = provider


def _is_timeout(exc: Exception) -> bool:
    return isinstance(exc, (httpx.TimeoutException, TimeoutError)) or "timeout" in str(exc).lower()


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Pick the error class for a failed call.

    A transport exception wins over the HTTP status; with neither the
    provider is treated as down.
    """
    if exception is not None:
        if _is_timeout(exception):
            return LLMErrorClass.TIMEOUT
        if isinstance(exception, httpx.NetworkError):
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    classifier = _CLASSIFIERS.get(provider)
    if classifier is None:
        logger.warning("llm.classify.unknown_provider", provider=provider)
        return LLMErrorClass.PROVIDER_DOWN
    return classifier(status_code, json_body)


_OPENAI_STATUS_CLASSES = {
    401: LLMErrorClass.INVALID_KEY,
    403: LLMErrorClass.INVALID_KEY,
    404: LLMErrorClass.MODEL_NOT_AVAILABLE,
    429: LLMErrorClass.RATE_LIMIT,
}


def _classify_openai(status_code: int, json_body: dict | None) -> LLMErrorClass:
    if status_code in _OPENAI_STATUS_CLASSES:
        return _OPENAI_STATUS_CLASSES[status_code]

    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        message = (error.get("message") or "").lower()
        if error.get("code") == "context_length_exceeded" or "maximum context length" in message:
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "model" in message and "not found" in message:
            return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN


def _classify_gemini(status_code: int, json_body: dict | None) -> LLMErrorClass:
    # Gemini reports a bad key as a 400 with API_KEY_INVALID in the details
    body = str(json_body).lower() if json_body else ""

    checks = (
        (LLMErrorClass.INVALID_KEY, "api_key_invalid" in body or status_code in (401, 403)),
        (LLMErrorClass.RATE_LIMIT, status_code == 429 or "resource_exhausted" in body),
        (LLMErrorClass.CONTEXT_TOO_LARGE, "exceeds the maximum" in body),
        (LLMErrorClass.MODEL_NOT_AVAILABLE, status_code == 404 or "model not found" in body),
    )
    for error_class, matched in checks:
        if matched:
            return error_class
    return LLMErrorClass.PROVIDER_DOWN


_CLASSIFIERS = {
    "openai": _classify_openai,
    "gemini": _classify_gemini,
}
