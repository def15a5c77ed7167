"""Blob key building utilities.

This module is the single point of logic for naming stored blobs.
All keys are produced by build_blob_key() and checked by validate_blob_key()
before any backend touches them.

Key Invariant:
    {epoch_ms}-{random}-{sanitized original name}

Rules:
    - Flat namespace: no slashes, no "." or ".." segments
    - Keys are never reused; the time + random prefix makes collisions negligible
    - The original name is kept only as a readable suffix
"""

import re
import secrets
import time

from refyn.storage.errors import StorageError

MAX_NAME_CHARS = 100

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_name(original_name: str) -> str:
    """Reduce a user-supplied filename to a safe key suffix.

    Args:
        original_name: Filename as sent by the client.

    Returns:
        Basename with unsafe characters replaced by "_", at most 100 chars.
    """
    base = original_name.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    if not cleaned:
        return "file"
    return cleaned[-MAX_NAME_CHARS:]


def build_blob_key(original_name: str, *, now_ms: int | None = None, nonce: int | None = None) -> str:
    """Build the storage key for a newly uploaded file.

    Args:
        original_name: Filename as sent by the client.
        now_ms: Epoch milliseconds (defaults to the current time).
        nonce: Random component (defaults to a fresh random integer).

    Returns:
        Key of the form "{epoch_ms}-{nonce}-{name}".

    Example:
        >>> build_blob_key("My Photo.JPG", now_ms=1700000000000, nonce=42)
        '1700000000000-42-My_Photo.JPG'
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if nonce is None:
        nonce = secrets.randbelow(10**9)
    return f"{now_ms}-{nonce}-{sanitize_name(original_name)}"


def validate_blob_key(key: str) -> str:
    """Reject keys that could escape a backend's namespace.

    Args:
        key: Blob key.

    Returns:
        The key unchanged.

    Raises:
        StorageError: If the key is empty or contains path syntax.
    """
    if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
        raise StorageError(f"Invalid blob key: {key!r}", code="E_INVALID_KEY")
    return key
