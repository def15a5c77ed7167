"""OpenAI chat completions adapter, used for note extraction.

Text-only turns go out as a plain ``content`` string. A turn carrying images
uses the content-array form with ``data:`` URLs; any other inline media is
refused with TypeError because the endpoint cannot take it.
"""

import httpx

from refyn.services.llm.adapter import LLMAdapter
from refyn.services.llm.errors import LLMError, LLMErrorClass
from refyn.services.llm.types import InlineDataPart, LLMRequest, LLMResponse, LLMUsage, TextPart, Turn

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


def _encode_turn(turn: Turn) -> dict:
    if all(isinstance(p, TextPart) for p in turn.parts):
        return {"role": turn.role, "content": turn.text}

    content: list[dict] = []
    for part in turn.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, InlineDataPart) and part.mime_type.startswith("image/"):
            data_url = f"data:{part.mime_type};base64,{part.data}"
            content.append({"type": "image_url", "image_url": {"url": data_url}})
        else:
            raise TypeError(f"OpenAI chat does not accept inline {part.mime_type} parts")
    return {"role": turn.role, "content": content}


def build_openai_body(req: LLMRequest) -> dict:
    body: dict = {
        "model": req.model_name,
        "messages": [_encode_turn(turn) for turn in req.messages],
        "max_tokens": req.max_tokens,
    }
    if req.temperature is not None:
        body["temperature"] = req.temperature
    if req.json_response:
        body["response_format"] = {"type": "json_object"}
    return body


def parse_openai_reply(data: dict, headers: httpx.Headers) -> LLMResponse:
    choices = data.get("choices")
    if not choices:
        raise LLMError(LLMErrorClass.PROVIDER_DOWN, "OpenAI returned no choices", provider="openai")

    raw_usage = data.get("usage") or {}
    usage = None
    if raw_usage:
        usage = LLMUsage(
            prompt_tokens=raw_usage.get("prompt_tokens"),
            completion_tokens=raw_usage.get("completion_tokens"),
            total_tokens=raw_usage.get("total_tokens"),
        )

    return LLMResponse(
        text=(choices[0].get("message") or {}).get("content") or "",
        usage=usage,
        provider_request_id=headers.get("x-request-id") or data.get("id"),
    )


class OpenAIAdapter(LLMAdapter):
    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: float) -> LLMResponse:
        # Encode first so unsupported media fails before any network call
        body = build_openai_body(req)
        response = await self._post_json(
            OPENAI_CHAT_URL, {"Authorization": f"Bearer {api_key}"}, body, timeout_s
        )
        return parse_openai_reply(response.json(), response.headers)
