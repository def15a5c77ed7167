"""Model calls for Refyn: Gemini for analysis, chat and titles, OpenAI for notes.

Callers build an ``LLMRequest`` from ``Turn`` objects and go through
``LLMRouter.generate``; every failure surfaces as ``LLMError``.
"""

from refyn.services.llm.adapter import LLMAdapter
from refyn.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from refyn.services.llm.router import DEFAULT_TIMEOUT_S, LLMRouter
from refyn.services.llm.types import (
    ContentPart,
    InlineDataPart,
    LLMCallContext,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    TextPart,
    Turn,
)

__all__ = [
    "DEFAULT_TIMEOUT_S",
    "ContentPart",
    "InlineDataPart",
    "LLMAdapter",
    "LLMCallContext",
    "LLMError",
    "LLMErrorClass",
    "LLMOperation",
    "LLMRequest",
    "LLMResponse",
    "LLMRouter",
    "LLMUsage",
    "TextPart",
    "Turn",
    "classify_provider_error",
]
