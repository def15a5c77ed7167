"""Medium prompt registry and the fixed prompt builders.

The registry maps a medium key to the system prompt that frames the model's
persona and evaluation criteria. It is read-only after construction and is
carried by FeedbackConfig rather than read from module state at request time.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from refyn.db.models import Message, MessageRole

DEFAULT_MEDIUM = "photography"

MEDIUM_SYSTEM_PROMPTS: Mapping[str, str] = MappingProxyType(
    {
        "photography": (
            "You are an expert photography tutor, with a broad background in photography "
            "practice and theory. Your job is to provide professional feedback on the work "
            "submitted, including how it can be improved and aspects that show promise. If more "
            "than one image file is submitted, try to determine any connection between the "
            "images, and if a file containing text is provided, treat that as additional context "
            "when providing your feedback."
        ),
        "painting": (
            "You are an expert painting instructor with extensive knowledge of various painting "
            "techniques, color theory, and art history. Analyze the submitted artwork focusing on "
            "composition, brushwork, color harmony, and overall artistic expression. Provide "
            "constructive feedback on areas for improvement and highlight successful elements."
        ),
        "drawing": (
            "You are a professional drawing instructor with expertise in various drawing media "
            "and techniques. Evaluate the submitted work for line quality, proportions, shading, "
            "perspective, and overall composition. Offer specific guidance on technical skills "
            "and artistic development."
        ),
        "music": (
            "You are an experienced music educator and composer with knowledge across multiple "
            "genres and instruments. Analyze the submitted audio for musicality, composition, "
            "arrangement, production quality, and performance. Provide feedback on both technical "
            "and creative aspects."
        ),
        "film": (
            "You are a film studies professor and industry professional with expertise in "
            "cinematography, editing, storytelling, and visual narrative. Review the submitted "
            "video content for visual composition, narrative structure, pacing, and technical "
            "execution. Focus on both artistic vision and technical craft."
        ),
        "graphicDesign": (
            "You are a senior graphic designer with extensive experience in visual communication, "
            "typography, layout, and brand design. Evaluate the submitted work for visual "
            "hierarchy, typography choices, color usage, and overall design effectiveness. "
            "Consider both aesthetic appeal and functional communication."
        ),
        "illustration": (
            "You are a professional illustrator with expertise in various illustration styles and "
            "techniques. Analyze the submitted artwork for concept development, visual "
            "storytelling, technical execution, and stylistic choices. Provide feedback on both "
            "artistic merit and commercial viability."
        ),
        "dance": (
            "You are a professional dancer instructor with expertise in various forms of dance "
            "styles and techniques. Analyze the submitted video of a dancer routine for technical "
            "development, visual storytelling, technical execution, and stylistic choices. "
            "Provide feedback on both artistic merit and technical ability."
        ),
        "creativeWriting": (
            "You are an experienced creative writing instructor and published author with "
            "expertise across various literary forms. Review the submitted text for narrative "
            "structure, character development, prose style, dialogue, and overall literary "
            "merit. Provide constructive feedback on both craft and creative expression."
        ),
    }
)


class MediumPromptRegistry:
    """Read-only lookup from medium key to system prompt.

    Unknown keys resolve to the default medium's prompt instead of failing.
    """

    def __init__(self, prompts: Mapping[str, str], default: str = DEFAULT_MEDIUM):
        if default not in prompts:
            raise ValueError(f"Default medium {default!r} has no prompt")
        self._prompts = MappingProxyType(dict(prompts))
        self._default = default

    @property
    def media(self) -> tuple[str, ...]:
        return tuple(self._prompts)

    @property
    def default(self) -> str:
        return self._default

    def prompt_for(self, media_type: str | None) -> str:
        if media_type and media_type in self._prompts:
            return self._prompts[media_type]
        return self._prompts[self._default]

    def __contains__(self, media_type: object) -> bool:
        return media_type in self._prompts


def default_registry() -> MediumPromptRegistry:
    return MediumPromptRegistry(MEDIUM_SYSTEM_PROMPTS)


# =============================================================================
# Analysis and chat prompts
# =============================================================================


def build_analysis_prompt(system_prompt: str, context_prompt: str, media_type: str) -> str:
    """First text part of an analysis request."""
    return (
        f"{system_prompt}\n\n"
        f"User Context: {context_prompt}\n\n"
        "Please analyze the uploaded files and provide detailed creative feedback based on "
        f"your expertise in {media_type}."
    )


def _speaker(role: str) -> str:
    return "User" if role == MessageRole.user.value else "AI"


def build_transcript(messages: Iterable[Message]) -> str:
    """Role-labeled transcript, one block per message, in the given order."""
    return "\n\n".join(f"{_speaker(m.role)}: {m.content}" for m in messages)


def build_chat_prompt(messages: Iterable[Message], new_message: str) -> str:
    """First text part of a follow-up request.

    `messages` is the full history, already including the new user message.
    """
    return (
        "Previous conversation about uploaded creative files:\n\n"
        f"{build_transcript(messages)}\n\n"
        f"User's new question: {new_message}\n\n"
        "Please provide a helpful response based on the previous analysis and files "
        "discussed. Reference specific details from the uploaded files where relevant."
    )


# =============================================================================
# Title prompt
# =============================================================================

TITLE_INSTRUCTION = (
    "Write a short descriptive title (5-8 words) for this image. "
    "Respond with the title only, without quotes or extra commentary."
)


# =============================================================================
# Note extraction prompts
# =============================================================================

NOTE_EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at analyzing creative feedback and extracting valuable resources, "
    "techniques, and advice. Always respond with valid JSON format."
)


def build_note_extraction_prompt(ai_response: str, max_notes: int = 5) -> str:
    return f"""Analyze this AI feedback and extract any valuable insights that could be saved as reference notes. Look for specific techniques, artistic principles, resources, or actionable advice mentioned in the feedback.

Feedback content:
"{ai_response}"

Extract any of the following types of insights:
- TECHNIQUES: Specific artistic methods, composition rules, technical approaches
- ADVICE: General principles, best practices, or improvement suggestions
- RESOURCES: Mentions of books, websites, artists, galleries, tools, or references

Create a JSON response with an "items" array containing up to {max_notes} extracted notes. Each note should have:
- title: Concise descriptive title (under 60 chars)
- content: Detailed explanation (under 300 chars)
- category: One of "technique", "advice", or "resource"
- link: URL if mentioned, otherwise null

Example response:
{{
  "items": [
    {{
      "title": "Leading Lines Composition",
      "content": "Use natural or architectural elements to create lines that guide the viewer's eye toward your main subject. Roads, fences, or shadows work well as leading lines.",
      "category": "technique",
      "link": null
    }}
  ]
}}

If no valuable insights are found, return: {{"items": []}}"""
