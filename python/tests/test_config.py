"""Tests for application configuration and the derived pipeline config."""

import httpx
import pytest
from pydantic import ValidationError

from refyn.config import Environment, Settings
from refyn.services.feedback_config import FeedbackConfig, build_feedback_config
from refyn.storage import build_blob_store


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "REFYN_ENV": "test",
        "SUPABASE_JWKS_URL": "http://localhost:54321/auth/v1/.well-known/jwks.json",
        "SUPABASE_ISSUER": "http://localhost:54321/auth/v1/",
        "SUPABASE_AUDIENCES": "authenticated, anon ,",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestSettingsValidation:
    @pytest.mark.parametrize(
        "missing", ["SUPABASE_JWKS_URL", "SUPABASE_ISSUER", "SUPABASE_AUDIENCES"]
    )
    def test_auth_settings_required(self, missing):
        with pytest.raises(ValidationError, match=missing):
            _make_settings(**{missing: ""})

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_internal_secret_required_outside_local(self, env):
        with pytest.raises(ValidationError, match="REFYN_INTERNAL_SECRET"):
            _make_settings(REFYN_ENV=env, REFYN_INTERNAL_SECRET="")

    def test_staging_with_secret(self):
        s = _make_settings(REFYN_ENV="staging", REFYN_INTERNAL_SECRET="s3cret")

        assert s.refyn_env == Environment.STAGING
        assert s.requires_internal_header is True

    def test_local_does_not_require_internal_header(self):
        assert _make_settings(REFYN_ENV="local").requires_internal_header is False


class TestDerivedSettings:
    def test_audience_list(self):
        assert _make_settings().audience_list == ["authenticated", "anon"]

    def test_normalized_issuer(self):
        assert _make_settings().normalized_issuer == "http://localhost:54321/auth/v1"

    def test_academic_domain_labels(self):
        s = _make_settings(ACADEMIC_EMAIL_DOMAINS=" EDU, .ac ,,ac.jp")

        assert s.academic_domain_labels == frozenset({"edu", "ac", "ac.jp"})

    def test_remote_storage_needs_url_and_key(self):
        assert not _make_settings(SUPABASE_URL="http://sb").remote_storage_configured
        assert _make_settings(
            SUPABASE_URL="http://sb", SUPABASE_SERVICE_KEY="service"
        ).remote_storage_configured


class TestBuildFeedbackConfig:
    def test_settings_flow_into_config(self):
        s = _make_settings(
            GEMINI_API_KEY="gm-key",
            OPENAI_API_KEY="sk-key",
            ANALYSIS_MODEL="gemini-test",
            NOTES_MODEL="gpt-test",
            QUOTA_FREE=2,
            QUOTA_ACADEMIC=99,
            MAX_UPLOAD_BYTES=2048,
            MAX_FILES_PER_UPLOAD=4,
        )

        config = build_feedback_config(s)

        assert config.analysis_api_key == "gm-key"
        assert config.notes_api_key == "sk-key"
        assert config.analysis_model == "gemini-test"
        assert config.notes_model == "gpt-test"
        assert config.quotas.free == 2
        assert config.quotas.academic == 99
        assert config.max_upload_bytes == 2048
        assert config.max_files_per_upload == 4

    def test_keys_hidden_from_repr(self):
        config = FeedbackConfig(analysis_api_key="gm-secret", notes_api_key="sk-secret")

        assert "gm-secret" not in repr(config)
        assert "sk-secret" not in repr(config)

    @pytest.mark.parametrize(
        "mime,allowed,inline",
        [
            ("image/png", True, True),
            ("IMAGE/JPEG", True, True),
            ("audio/mpeg", True, True),
            ("video/quicktime", True, True),
            ("application/pdf", True, True),
            ("text/plain", False, False),
            ("application/zip", False, False),
        ],
    )
    def test_mime_checks(self, mime, allowed, inline):
        config = FeedbackConfig()

        assert config.is_allowed_mime(mime) is allowed
        assert config.is_inline_mime(mime) is inline


class TestBuildBlobStore:
    def test_local_only_without_supabase(self, tmp_path):
        store = build_blob_store(_make_settings(LOCAL_UPLOAD_DIR=str(tmp_path)), httpx.AsyncClient())

        assert [b.name for b in store.backends] == ["local"]

    def test_supabase_first_when_configured(self, tmp_path):
        s = _make_settings(
            LOCAL_UPLOAD_DIR=str(tmp_path),
            SUPABASE_URL="http://localhost:54321",
            SUPABASE_SERVICE_KEY="service",
        )

        store = build_blob_store(s, httpx.AsyncClient())

        assert [b.name for b in store.backends] == ["supabase", "local"]
