"""Refyn settings, read from the environment (and ``.env``) by pydantic-settings.

Every deployment needs DATABASE_URL and the three Supabase auth values
(SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES). Staging and prod
also need REFYN_INTERNAL_SECRET, which callers present in the X-Refyn-Internal
header.

Uploaded bytes go to Supabase Storage when SUPABASE_URL and
SUPABASE_SERVICE_KEY are set, with LOCAL_UPLOAD_DIR as the fallback tier.
Gemini (GEMINI_API_KEY) handles analysis, chat and titles; OpenAI
(OPENAI_API_KEY) handles note extraction.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


DEPLOYED_ENVIRONMENTS = frozenset({Environment.STAGING, Environment.PROD})


class Settings(BaseSettings):
    refyn_env: Environment = Field(default=Environment.LOCAL, alias="REFYN_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    refyn_internal_secret: str | None = Field(default=None, alias="REFYN_INTERNAL_SECRET")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Supabase auth settings (required in all environments)
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Blob storage: Supabase is the primary tier, the local directory the fallback
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    storage_bucket: str = Field(default="uploads", alias="STORAGE_BUCKET")
    local_upload_dir: str = Field(default="uploads", alias="LOCAL_UPLOAD_DIR")
    blob_timeout_s: float = Field(default=30.0, alias="BLOB_TIMEOUT_S")

    # Upload limits
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")  # 100 MB
    max_files_per_upload: int = Field(default=10, alias="MAX_FILES_PER_UPLOAD")

    # Platform API keys for AI providers
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    enable_gemini: bool = Field(default=True, alias="ENABLE_GEMINI")
    enable_openai: bool = Field(default=True, alias="ENABLE_OPENAI")

    analysis_model: str = Field(default="gemini-2.0-flash-exp", alias="ANALYSIS_MODEL")
    notes_model: str = Field(default="gpt-4o", alias="NOTES_MODEL")
    llm_timeout_s: int = Field(default=45, alias="LLM_TIMEOUT_S")
    analysis_max_tokens: int = Field(default=4096, alias="ANALYSIS_MAX_TOKENS")

    # Monthly conversation quotas per plan
    quota_free: int = Field(default=5, alias="QUOTA_FREE")
    quota_standard: int = Field(default=30, alias="QUOTA_STANDARD")
    quota_premium: int = Field(default=50, alias="QUOTA_PREMIUM")
    quota_academic: int = Field(default=50, alias="QUOTA_ACADEMIC")
    academic_email_domains: str = Field(default="edu,ac", alias="ACADEMIC_EMAIL_DOMAINS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def check_deployment_settings(self) -> "Settings":
        missing = [
            env_name
            for env_name, value in (
                ("SUPABASE_JWKS_URL", self.supabase_jwks_url),
                ("SUPABASE_ISSUER", self.supabase_issuer),
                ("SUPABASE_AUDIENCES", self.supabase_audiences),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required Supabase auth settings: {', '.join(missing)}")

        if self.requires_internal_header and not self.refyn_internal_secret:
            raise ValueError(
                f"REFYN_INTERNAL_SECRET must be set when REFYN_ENV={self.refyn_env.value}"
            )
        return self

    @property
    def requires_internal_header(self) -> bool:
        return self.refyn_env in DEPLOYED_ENVIRONMENTS

    @property
    def audience_list(self) -> list[str]:
        return _split_csv(self.supabase_audiences)

    @property
    def normalized_issuer(self) -> str | None:
        return self.supabase_issuer.rstrip("/") if self.supabase_issuer else None

    @property
    def academic_domain_labels(self) -> frozenset[str]:
        """Domain labels (``edu``, ``ac``) that mark an academic email address."""
        return frozenset(label.lower().strip(".") for label in _split_csv(self.academic_email_domains))

    @property
    def remote_storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


def _split_csv(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    """Settings from the environment, built once per process.

    Raises:
        ValidationError: If a required setting is missing or malformed.
    """
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
