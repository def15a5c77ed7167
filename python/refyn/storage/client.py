"""Blob storage backends and the tiered blob store.

Provides a single logical store over ordered backends:
- SupabaseBlobBackend: primary remote tier (Supabase Storage REST API)
- LocalBlobBackend: local filesystem tier, also home of files written
  before the remote tier existed
- MemoryBlobBackend: in-process tier for tests and throwaway dev runs

BlobStore semantics:
- fetch: first tier that returns bytes wins; any failure on a tier falls
  through to the next; BlobNotFoundError when every tier misses
- store: first tier that accepts the write wins; callers are not told which
- delete: every tier, best-effort, never raises

Every backend call runs under a timeout.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import quote

import anyio
import httpx

from refyn.logging import get_logger
from refyn.storage.errors import BlobNotFoundError, StorageError
from refyn.storage.paths import validate_blob_key

logger = get_logger(__name__)

DEFAULT_BLOB_TIMEOUT_S = 30.0


class BlobBackend(ABC):
    """Abstract base class for one storage tier."""

    name: str = "blob"

    @abstractmethod
    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        """Write bytes under key, replacing any previous object.

        Raises:
            StorageError: If the write fails.
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read the bytes stored under key.

        Raises:
            BlobNotFoundError: If this tier has no object for key.
            StorageError: If the read fails for another reason.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object for key. Missing objects are not an error.

        Raises:
            StorageError: If the delete fails.
        """
        ...


class SupabaseBlobBackend(BlobBackend):
    """Supabase Storage tier.

    Uses the shared httpx.AsyncClient against the Supabase Storage API with
    the service-role key.
    """

    name = "supabase"

    def __init__(
        self,
        client: httpx.AsyncClient,
        supabase_url: str,
        service_key: str,
        bucket: str = "uploads",
        timeout_s: float = DEFAULT_BLOB_TIMEOUT_S,
    ):
        """Initialize the Supabase tier.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            supabase_url: Supabase project URL (e.g., https://xxx.supabase.co).
            service_key: Supabase service role key.
            bucket: Storage bucket name.
            timeout_s: Per-request timeout in seconds.
        """
        self._client = client
        self._base_url = supabase_url.rstrip("/")
        self._bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._timeout = httpx.Timeout(timeout_s, connect=10.0)
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, key: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{quote(key)}"

    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        response = await self._client.post(
            self._object_url(key),
            headers={**self._headers, "Content-Type": content_type, "x-upsert": "true"},
            content=data,
            timeout=self._timeout,
        )
        if response.status_code not in (200, 201):
            raise StorageError(f"Failed to upload object: {response.status_code}")

    async def get(self, key: str) -> bytes:
        response = await self._client.get(
            self._object_url(key), headers=self._headers, timeout=self._timeout
        )
        if response.status_code == 200:
            return response.content
        if _is_missing_object(response):
            raise BlobNotFoundError(key)
        raise StorageError(f"Failed to download object: {response.status_code}")

    async def delete(self, key: str) -> None:
        response = await self._client.delete(
            self._object_url(key), headers=self._headers, timeout=self._timeout
        )
        if response.status_code not in (200, 204) and not _is_missing_object(response):
            raise StorageError(f"Failed to delete object: {response.status_code}")


def _is_missing_object(response: httpx.Response) -> bool:
    """Supabase reports a missing object as 404, or as 400 with a not_found body."""
    if response.status_code == 404:
        return True
    if response.status_code == 400:
        body = response.text.lower()
        return "not_found" in body or "not found" in body
    return False


class LocalBlobBackend(BlobBackend):
    """Local filesystem tier rooted at a single directory."""

    name = "local"

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> anyio.Path:
        validate_blob_key(key)
        return anyio.Path(self._root / key)

    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        path = self._path_for(key)
        partial = path.with_name(f"{path.name}.part")
        try:
            await path.parent.mkdir(parents=True, exist_ok=True)
            await partial.write_bytes(data)
            await partial.rename(path)
        except OSError as e:
            raise StorageError(f"Failed to write local object: {e.strerror or e}") from e

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e
        except OSError as e:
            raise StorageError(f"Failed to read local object: {e.strerror or e}") from e

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete local object: {e.strerror or e}") from e


class MemoryBlobBackend(BlobBackend):
    """In-memory tier for testing without Supabase or a writable disk."""

    name = "memory"

    def __init__(self, name: str = "memory"):
        self.name = name
        self._objects: dict[str, tuple[bytes, str]] = {}  # key -> (content, content_type)

    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        validate_blob_key(key)
        self._objects[key] = (data, content_type)

    async def get(self, key: str) -> bytes:
        if key not in self._objects:
            raise BlobNotFoundError(key)
        return self._objects[key][0]

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    # Test helper methods

    def put_object(self, key: str, content: bytes, content_type: str = "image/png") -> None:
        """Store an object directly (test helper)."""
        self._objects[key] = (content, content_type)

    def get_object(self, key: str) -> bytes | None:
        """Get object content directly (test helper)."""
        if key not in self._objects:
            return None
        return self._objects[key][0]

    def keys(self) -> list[str]:
        """List stored keys (test helper)."""
        return list(self._objects)

    def clear(self) -> None:
        """Clear all stored objects (test helper)."""
        self._objects.clear()


class BlobStore:
    """One logical store over ordered tiers."""

    def __init__(self, backends: Sequence[BlobBackend], *, timeout_s: float = DEFAULT_BLOB_TIMEOUT_S):
        if not backends:
            raise ValueError("BlobStore needs at least one backend")
        self._backends = list(backends)
        self._timeout_s = timeout_s

    @property
    def backends(self) -> list[BlobBackend]:
        return list(self._backends)

    async def store(self, key: str, data: bytes, *, content_type: str = "application/octet-stream") -> None:
        """Write bytes to the first tier that accepts them.

        Raises:
            StorageError: If every tier rejects the write.
        """
        validate_blob_key(key)
        last_error: Exception | None = None
        for index, backend in enumerate(self._backends):
            try:
                with anyio.fail_after(self._timeout_s):
                    await backend.put(key, data, content_type=content_type)
            except Exception as e:
                last_error = e
                logger.warning(
                    "blob.store.tier_failed",
                    tier=backend.name,
                    blob_key=key,
                    error_type=type(e).__name__,
                )
                continue
            if index > 0:
                logger.info("blob.store.fallback", tier=backend.name, blob_key=key)
            return

        raise StorageError("Failed to store object in any tier") from last_error

    async def fetch(self, key: str) -> bytes:
        """Read bytes from the first tier that has them.

        Raises:
            BlobNotFoundError: If no tier can produce the object.
        """
        validate_blob_key(key)
        for index, backend in enumerate(self._backends):
            try:
                with anyio.fail_after(self._timeout_s):
                    data = await backend.get(key)
            except BlobNotFoundError:
                continue
            except Exception as e:
                logger.warning(
                    "blob.fetch.tier_failed",
                    tier=backend.name,
                    blob_key=key,
                    error_type=type(e).__name__,
                )
                continue
            if index > 0:
                logger.info("blob.fetch.fallback", tier=backend.name, blob_key=key)
            return data

        logger.warning("blob.fetch.not_found", blob_key=key)
        raise BlobNotFoundError(key)

    async def delete(self, key: str) -> None:
        """Delete from every tier. Best-effort: logs errors, never raises."""
        for backend in self._backends:
            try:
                with anyio.fail_after(self._timeout_s):
                    await backend.delete(key)
            except Exception as e:
                logger.warning(
                    "blob.delete.failed",
                    tier=backend.name,
                    blob_key=key,
                    error_type=type(e).__name__,
                )


def build_blob_store(settings, client: httpx.AsyncClient) -> BlobStore:
    """Build the configured blob store.

    Returns:
        BlobStore over Supabase (if SUPABASE_URL and SUPABASE_SERVICE_KEY are set)
        followed by the local upload directory.
    """
    backends: list[BlobBackend] = []
    if settings.remote_storage_configured:
        backends.append(
            SupabaseBlobBackend(
                client,
                supabase_url=settings.supabase_url,
                service_key=settings.supabase_service_key,
                bucket=settings.storage_bucket,
                timeout_s=settings.blob_timeout_s,
            )
        )
    backends.append(LocalBlobBackend(settings.local_upload_dir))
    return BlobStore(backends, timeout_s=settings.blob_timeout_s)
