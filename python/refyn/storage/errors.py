"""Blob storage exceptions."""


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class BlobNotFoundError(StorageError):
    """No tier holds bytes for the requested key.

    Callers fetching many blobs treat this as recoverable and skip the blob.
    """

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}", code="E_STORAGE_MISSING")
        self.key = key
