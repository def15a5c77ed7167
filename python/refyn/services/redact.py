"""Keep user content and credentials out of the logs.

``safe_kv`` wraps the keyword fields of a log call and refuses names that
would carry prompts, messages, AI replies, file bytes or secrets. A field
may still describe such a value through a derived suffix: ``prompt_chars``,
``content_length``, ``message_sha256`` or ``token_hash``.

    logger.info("analysis.started", **safe_kv(file_count=2, context_chars=140))
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "api_key",
        "bearer",
        "content",
        "context_prompt",
        "data",
        "message_text",
        "password",
        "prompt",
        "raw_body",
        "response_text",
        "secret",
        "token",
    }
)

DERIVED_SUFFIXES = ("_chars", "_length", "_sha256", "_hash")

# Environments where a violation is a bug to fail loudly on
STRICT_ENVS = frozenset({"local", "test"})


def hash_text(value: str) -> str:
    """Hex SHA-256 of ``value``, for correlating log lines without the text."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _is_forbidden(key: str) -> bool:
    return key in FORBIDDEN_KEYS and not key.endswith(DERIVED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Return ``kwargs`` unchanged after checking the key names.

    Raises:
        ValueError: A forbidden key in local or test. Staging and prod log a
            ``safe_kv_violation`` warning instead so a bad log line never
            fails a request.
    """
    bad_keys = sorted(key for key in kwargs if _is_forbidden(key))
    if not bad_keys:
        return kwargs

    env = _env or os.environ.get("REFYN_ENV", "local")
    if env in STRICT_ENVS:
        raise ValueError(f"Log fields must not carry raw content or secrets: {bad_keys}")
    structlog.get_logger(__name__).warning("safe_kv_violation", forbidden_keys=bad_keys)
    return kwargs
