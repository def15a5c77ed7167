"""Gemini ``generateContent`` adapter (analysis, chat and titles).

The key travels in the ``x-goog-api-key`` header, never the query string.
System turns become ``systemInstruction``; assistant turns are sent with
Gemini's ``model`` role. Uploaded images, audio, video and PDFs go inline as
``inlineData`` parts.
"""

from refyn.services.llm.adapter import LLMAdapter
from refyn.services.llm.errors import LLMError, LLMErrorClass
from refyn.services.llm.types import (
    ContentPart,
    InlineDataPart,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    TextPart,
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_ROLE_NAMES = {"user": "user", "assistant": "model"}


def _encode_part(part: ContentPart) -> dict:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineDataPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def build_gemini_body(req: LLMRequest) -> dict:
    generation_config: dict = {"maxOutputTokens": req.max_tokens}
    if req.temperature is not None:
        generation_config["temperature"] = req.temperature
    if req.json_response:
        generation_config["responseMimeType"] = "application/json"

    body: dict = {
        "contents": [
            {"role": _ROLE_NAMES[turn.role], "parts": [_encode_part(p) for p in turn.parts]}
            for turn in req.messages
            if turn.role != "system"
        ],
        "generationConfig": generation_config,
    }

    system_parts = [_encode_part(p) for turn in req.messages if turn.role == "system" for p in turn.parts]
    if system_parts:
        body["systemInstruction"] = {"parts": system_parts}
    return body


def parse_gemini_reply(data: dict) -> LLMResponse:
    """Text of the first candidate.

    Raises:
        LLMError(PROVIDER_DOWN): Blocked prompt (no candidates) or an empty candidate.
    """
    candidates = data.get("candidates") or []
    if not candidates:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        raise LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            f"Gemini returned no candidates (block_reason={block_reason})",
            provider="gemini",
        )

    first = candidates[0]
    parts = (first.get("content") or {}).get("parts") or []
    text = "".join(p["text"] for p in parts if "text" in p)
    if not text.strip():
        raise LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            f"Gemini candidate had no text (finish_reason={first.get('finishReason')})",
            provider="gemini",
        )

    meta = data.get("usageMetadata")
    usage = (
        LLMUsage(
            prompt_tokens=meta.get("promptTokenCount"),
            completion_tokens=meta.get("candidatesTokenCount"),
            total_tokens=meta.get("totalTokenCount"),
        )
        if meta
        else None
    )
    # Gemini has no request id to report
    return LLMResponse(text=text, usage=usage, provider_request_id=None)


class GeminiAdapter(LLMAdapter):
    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: float) -> LLMResponse:
        response = await self._post_json(
            f"{GEMINI_BASE_URL}/{req.model_name}:generateContent",
            {"x-goog-api-key": api_key},
            build_gemini_body(req),
            timeout_s,
        )
        return parse_gemini_reply(response.json())
