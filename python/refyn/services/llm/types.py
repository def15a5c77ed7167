"""Value types passed between the services, the router and the adapters."""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineDataPart:
    """Binary content sent inline; ``data`` is base64 text."""

    mime_type: str
    data: str


ContentPart = TextPart | InlineDataPart


@dataclass(frozen=True)
class Turn:
    """One conversation turn, in order of its parts.

    Uploaded files ride along with the first user turn as InlineDataParts.
    """

    role: Role
    parts: tuple[ContentPart, ...]

    @classmethod
    def from_text(cls, role: Role, text: str) -> "Turn":
        return cls(role=role, parts=(TextPart(text),))

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def text_chars(self) -> int:
        return sum(len(p.text) for p in self.parts if isinstance(p, TextPart))

    @property
    def inline_count(self) -> int:
        return sum(isinstance(p, InlineDataPart) for p in self.parts)


@dataclass(frozen=True)
class LLMRequest:
    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None
    # Ask the provider for a bare JSON object
    json_response: bool = False


@dataclass(frozen=True)
class LLMUsage:
    """Token counts; providers may omit any of them."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMResponse:
    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


class LLMOperation(str, Enum):
    """What a model call is for. Only used in log fields."""

    ANALYZE = "analyze"
    CHAT = "chat"
    TITLE = "title"
    NOTE_EXTRACTION = "note_extraction"
    OTHER = "other"


@dataclass(frozen=True)
class LLMCallContext:
    operation: LLMOperation
    conversation_id: str | None = None
    file_id: str | None = None
