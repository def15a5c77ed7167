"""One entry point for every model call Refyn makes.

``LLMRouter.generate`` picks the provider adapter, refuses disabled providers
and missing keys, enforces an overall deadline with ``anyio.fail_after`` and
turns whatever goes wrong into an ``LLMError``. Each call logs
``llm.request.started`` then ``llm.request.finished`` or
``llm.request.failed``; fields pass through ``safe_kv`` so prompts and keys
never reach the log.
"""

import time

import anyio
import httpx

from refyn.logging import get_logger
from refyn.services.llm.adapter import LLMAdapter
from refyn.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from refyn.services.llm.gemini_adapter import GeminiAdapter
from refyn.services.llm.openai_adapter import OpenAIAdapter
from refyn.services.llm.types import LLMCallContext, LLMOperation, LLMRequest, LLMResponse
from refyn.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 45


def _call_fields(provider: str, req: LLMRequest, ctx: LLMCallContext | None) -> dict:
    operation = ctx.operation if ctx else LLMOperation.OTHER
    fields: dict = {"provider": provider, "model_name": req.model_name, "llm_operation": operation.value}
    if ctx is not None:
        fields.update(
            {k: v for k, v in (("conversation_id", ctx.conversation_id), ("file_id", ctx.file_id)) if v}
        )
    return fields


def _response_json(response: httpx.Response) -> dict | None:
    try:
        return response.json()
    except ValueError:
        return None


def _to_llm_error(provider: str, exc: Exception) -> tuple[LLMError, dict]:
    """Map an adapter failure to an LLMError plus extra log fields."""
    if isinstance(exc, LLMError):
        return exc, {}

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=provider), {}

    if isinstance(exc, httpx.HTTPStatusError):
        resp = exc.response
        error_class = classify_provider_error(provider, resp.status_code, _response_json(resp), None)
        extra = {
            "status_code": resp.status_code,
            "provider_request_id": resp.headers.get("x-request-id") or resp.headers.get("request-id"),
        }
        return LLMError(error_class, f"Provider returned HTTP {resp.status_code}", provider=provider), extra

    if isinstance(exc, httpx.NetworkError):
        return LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=provider), {}

    return (
        LLMError(
            LLMErrorClass.PROVIDER_DOWN, f"Unexpected error: {type(exc).__name__}", provider=provider
        ),
        {"error_type": type(exc).__name__},
    )


class LLMRouter:
    """Gemini and OpenAI adapters behind feature flags, sharing one HTTP client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        enable_openai: bool = True,
        enable_gemini: bool = True,
    ):
        self._client = client
        self._enabled = {"openai": enable_openai, "gemini": enable_gemini}
        self._adapters: dict[str, LLMAdapter] = {
            "openai": OpenAIAdapter(client),
            "gemini": GeminiAdapter(client),
        }

    def is_provider_available(self, provider: str) -> bool:
        return provider in self._adapters and self._enabled.get(provider, False)

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Raises LLMError(MODEL_NOT_AVAILABLE) for unknown or disabled providers."""
        if provider not in self._adapters:
            message = f"Unknown provider: {provider}"
        elif not self._enabled.get(provider, False):
            message = f"Provider {provider} is disabled"
        else:
            return self._adapters[provider]
        raise LLMError(LLMErrorClass.MODEL_NOT_AVAILABLE, message, provider=provider)

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        api_key: str | None,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        """Run one model call.

        Args:
            provider: "gemini" or "openai".
            req: What to send.
            api_key: Provider key; None or empty means unconfigured.
            timeout_s: Deadline for the whole call, transport included.
            call_context: Operation and ids for the log events.

        Raises:
            LLMError: On every failure, already classified.
        """
        adapter = self.resolve_adapter(provider)
        fields = _call_fields(provider, req, call_context)
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if not api_key:
            error = LLMError(
                LLMErrorClass.INVALID_KEY, f"No API key configured for {provider}", provider=provider
            )
            logger.error(
                "llm.request.failed",
                **safe_kv(**fields, outcome="error", error_class=error.error_class.value),
            )
            raise error

        logger.info(
            "llm.request.started",
            **safe_kv(
                **fields,
                message_chars=sum(turn.text_chars for turn in req.messages),
                inline_parts=sum(turn.inline_count for turn in req.messages),
            ),
        )

        try:
            with anyio.fail_after(timeout_s):
                response = await adapter.generate(req, api_key=api_key, timeout_s=timeout_s)
        except Exception as exc:
            error, extra = _to_llm_error(provider, exc)
            logger.error(
                "llm.request.failed",
                **safe_kv(
                    **fields,
                    outcome="error",
                    error_class=error.error_class.value,
                    latency_ms=elapsed_ms(),
                    **extra,
                ),
            )
            if error is exc:
                raise
            raise error from exc

        usage = response.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **fields,
                outcome="success",
                latency_ms=elapsed_ms(),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                provider_request_id=response.provider_request_id,
                response_chars=len(response.text),
            ),
        )
        return response
