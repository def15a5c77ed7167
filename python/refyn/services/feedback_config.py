"""Immutable feedback pipeline configuration.

One FeedbackConfig is built from Settings at startup, stored on app.state and
handed to the orchestrators. Nothing here changes while the process runs.
"""

from dataclasses import dataclass, field

from refyn.config import Settings
from refyn.services.prompts import MediumPromptRegistry, default_registry

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/m4a",
        "audio/aac",
        "video/mp4",
        "video/mov",
        "video/avi",
        "video/quicktime",
        "video/webm",
        "application/pdf",
    }
)

# MIME prefixes and exact types the analysis model accepts as inline binary
INLINE_MIME_PREFIXES = ("image/", "audio/", "video/")
INLINE_MIME_TYPES = frozenset({"application/pdf"})

MAX_NOTES_PER_EXTRACTION = 5
NOTES_MAX_TOKENS = 1500
TITLE_MAX_TOKENS = 64


@dataclass(frozen=True)
class TierQuotas:
    """Monthly conversation quota per plan. Academic is the highest tier."""

    free: int = 5
    standard: int = 30
    premium: int = 50
    academic: int = 50


@dataclass(frozen=True)
class FeedbackConfig:
    """Everything the analysis and chat pipelines read as configuration."""

    prompts: MediumPromptRegistry = field(default_factory=default_registry)
    allowed_mime_types: frozenset[str] = ALLOWED_MIME_TYPES
    inline_mime_prefixes: tuple[str, ...] = INLINE_MIME_PREFIXES
    inline_mime_types: frozenset[str] = INLINE_MIME_TYPES

    analysis_provider: str = "gemini"
    analysis_model: str = "gemini-2.0-flash-exp"
    analysis_max_tokens: int = 4096
    title_max_tokens: int = TITLE_MAX_TOKENS
    notes_provider: str = "openai"
    notes_model: str = "gpt-4o"
    notes_max_tokens: int = NOTES_MAX_TOKENS
    max_notes: int = MAX_NOTES_PER_EXTRACTION
    llm_timeout_s: int = 45

    # Keys are resolved at startup; None means the provider is not configured
    analysis_api_key: str | None = field(default=None, repr=False)
    notes_api_key: str | None = field(default=None, repr=False)

    quotas: TierQuotas = field(default_factory=TierQuotas)
    academic_domain_labels: frozenset[str] = frozenset({"edu", "ac"})

    max_upload_bytes: int = 100 * 1024 * 1024
    max_files_per_upload: int = 10

    def is_allowed_mime(self, mime_type: str) -> bool:
        return mime_type.lower() in self.allowed_mime_types

    def is_inline_mime(self, mime_type: str) -> bool:
        mime = mime_type.lower()
        return mime in self.inline_mime_types or mime.startswith(self.inline_mime_prefixes)


def build_feedback_config(settings: Settings) -> FeedbackConfig:
    """Build the process-wide FeedbackConfig from settings."""
    return FeedbackConfig(
        analysis_model=settings.analysis_model,
        analysis_max_tokens=settings.analysis_max_tokens,
        notes_model=settings.notes_model,
        llm_timeout_s=settings.llm_timeout_s,
        analysis_api_key=settings.gemini_api_key,
        notes_api_key=settings.openai_api_key,
        quotas=TierQuotas(
            free=settings.quota_free,
            standard=settings.quota_standard,
            premium=settings.quota_premium,
            academic=settings.quota_academic,
        ),
        academic_domain_labels=settings.academic_domain_labels,
        max_upload_bytes=settings.max_upload_bytes,
        max_files_per_upload=settings.max_files_per_upload,
    )
