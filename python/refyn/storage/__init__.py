"""Blob storage for uploaded files.

Provides:
- BlobStore: tiered store (remote primary, local fallback)
- Backends for Supabase Storage, the local filesystem and memory
- Key building utilities
"""

from refyn.storage.client import (
    BlobBackend,
    BlobStore,
    LocalBlobBackend,
    MemoryBlobBackend,
    SupabaseBlobBackend,
    build_blob_store,
)
from refyn.storage.errors import BlobNotFoundError, StorageError
from refyn.storage.paths import build_blob_key, sanitize_name, validate_blob_key

__all__ = [
    "BlobBackend",
    "BlobStore",
    "LocalBlobBackend",
    "MemoryBlobBackend",
    "SupabaseBlobBackend",
    "build_blob_store",
    "BlobNotFoundError",
    "StorageError",
    "build_blob_key",
    "sanitize_name",
    "validate_blob_key",
]
