"""Uploaded file service layer.

Upload ordering:
1. Validate every file in the request (count, MIME type, size)
2. Write the bytes to the blob store
3. Insert the metadata row; on failure delete the bytes and re-raise

Nothing is written to storage unless the whole request validates. A failure
part-way through removes the files already recorded for the request, so an
upload lands whole or not at all.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.db.models import File
from refyn.db.session import transaction
from refyn.errors import ApiError, ApiErrorCode, InvalidRequestError, NotFoundError
from refyn.logging import get_logger
from refyn.schemas import FileOut
from refyn.services.feedback_config import FeedbackConfig
from refyn.storage import BlobNotFoundError, BlobStore, StorageError, build_blob_key

logger = get_logger(__name__)

INVALID_FILE_TYPE_MESSAGE = (
    "Invalid file type. Supported formats: JPEG, PNG, GIF, WebP, MP3, WAV, M4A, AAC, "
    "MP4, MOV, AVI, WebM, and PDF."
)


@dataclass(frozen=True)
class IncomingFile:
    """One file from a multipart upload, already read into memory."""

    original_name: str
    mime_type: str
    data: bytes


def file_to_out(file: File) -> FileOut:
    return FileOut.model_validate(file)


def check_upload_request(session_id: str | None, file_count: int, config: FeedbackConfig) -> str:
    """Check the session and file count. Runs before any upload body is read.

    Returns:
        The stripped session id.
    """
    session_id = (session_id or "").strip()
    if not session_id:
        raise InvalidRequestError(message="Session ID is required")
    if file_count == 0:
        raise InvalidRequestError(ApiErrorCode.E_NO_FILES, "No files uploaded")
    if file_count > config.max_files_per_upload:
        raise InvalidRequestError(
            ApiErrorCode.E_TOO_MANY_FILES,
            f"Too many files. Maximum is {config.max_files_per_upload} per upload.",
        )
    return session_id


def validate_upload(session_id: str | None, items: Sequence[IncomingFile], config: FeedbackConfig) -> str:
    """Check an upload request before anything is stored.

    Returns:
        The stripped session id.

    Raises:
        InvalidRequestError: On a missing session, no files, too many files,
            a disallowed MIME type or an oversize file.
    """
    session_id = check_upload_request(session_id, len(items), config)
    for item in items:
        if not config.is_allowed_mime(item.mime_type):
            raise InvalidRequestError(ApiErrorCode.E_INVALID_FILE_TYPE, INVALID_FILE_TYPE_MESSAGE)
        if len(item.data) > config.max_upload_bytes:
            limit_mb = config.max_upload_bytes // (1024 * 1024)
            raise InvalidRequestError(
                ApiErrorCode.E_FILE_TOO_LARGE, f"File too large. Maximum size is {limit_mb}MB."
            )
    return session_id


def _insert_file(db: Session, file: File) -> File:
    with transaction(db):
        db.add(file)
    return file


def _delete_rows(db: Session, files: Sequence[File]) -> None:
    with transaction(db):
        for file in files:
            db.delete(file)


async def _discard_recorded(db: Session, store: BlobStore, files: Sequence[File]) -> None:
    """Remove rows and bytes written earlier in a failed request. Best-effort."""
    if not files:
        return
    keys = [f.filename for f in files]
    try:
        await run_in_threadpool(_delete_rows, db, files)
    except SQLAlchemyError:
        # Rows that survive must keep their bytes
        logger.exception("files.upload.rollback_failed", file_count=len(files))
        return
    for key in keys:
        await store.delete(key)
    logger.info("files.upload.rolled_back", file_count=len(files))


async def upload_files(
    db: Session,
    store: BlobStore,
    config: FeedbackConfig,
    *,
    session_id: str | None,
    user_id: UUID | None,
    items: Sequence[IncomingFile],
) -> list[FileOut]:
    """Validate, store and record uploaded files.

    Raises:
        InvalidRequestError: If validation fails (nothing stored).
        ApiError(E_STORAGE_ERROR): If no blob tier accepts the bytes. Files
            already recorded for the request are removed first.
    """
    session_id = validate_upload(session_id, items, config)

    recorded: list[File] = []
    for item in items:
        key = build_blob_key(item.original_name)
        try:
            await store.store(key, item.data, content_type=item.mime_type)
        except StorageError as e:
            logger.error("files.upload.store_failed", blob_key=key, error_code=e.code)
            await _discard_recorded(db, store, recorded)
            raise ApiError(ApiErrorCode.E_STORAGE_ERROR, "Failed to store file") from e

        record = File(
            filename=key,
            original_name=item.original_name,
            mime_type=item.mime_type.lower(),
            size=len(item.data),
            session_id=session_id,
            user_id=user_id,
        )
        try:
            await run_in_threadpool(_insert_file, db, record)
        except Exception:
            await store.delete(key)
            await _discard_recorded(db, store, recorded)
            raise

        recorded.append(record)

    uploaded = [file_to_out(f) for f in recorded]
    logger.info("files.uploaded", session_id=session_id, file_count=len(uploaded))
    return uploaded


def is_visible_to(file: File, viewer_id: UUID) -> bool:
    return file.user_id is None or file.user_id == viewer_id


def load_session_files(db: Session, session_id: str) -> list[File]:
    """All files for a session in upload order."""
    return list(
        db.scalars(
            select(File).where(File.session_id == session_id).order_by(File.created_at, File.id)
        )
    )


def list_session_files(db: Session, viewer_id: UUID, session_id: str) -> list[FileOut]:
    return [file_to_out(f) for f in load_session_files(db, session_id) if is_visible_to(f, viewer_id)]


def get_file_for_viewer_or_404(db: Session, viewer_id: UUID, file_id: UUID) -> File:
    """Raises NotFoundError(E_FILE_NOT_FOUND) when missing or not visible."""
    file = db.get(File, file_id)
    if file is None or not is_visible_to(file, viewer_id):
        raise NotFoundError(ApiErrorCode.E_FILE_NOT_FOUND, "File not found")
    return file


async def read_file_content(store: BlobStore, file: File) -> bytes:
    """Bytes for a file from whichever tier holds them.

    Raises:
        NotFoundError(E_FILE_NOT_FOUND): If no tier has the bytes.
    """
    try:
        return await store.fetch(file.filename)
    except BlobNotFoundError as e:
        raise NotFoundError(ApiErrorCode.E_FILE_NOT_FOUND, "File content not found") from e


def _delete_row(db: Session, viewer_id: UUID, file_id: UUID) -> str:
    file = db.get(File, file_id)
    if file is None or file.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_FILE_NOT_FOUND, "File not found")
    key = file.filename
    with transaction(db):
        db.delete(file)
    return key


async def delete_file(db: Session, store: BlobStore, viewer_id: UUID, file_id: UUID) -> None:
    """Delete a file the viewer owns: row first, then bytes (best-effort).

    Raises:
        NotFoundError(E_FILE_NOT_FOUND): If missing or owned by someone else.
    """
    key = await run_in_threadpool(_delete_row, db, viewer_id, file_id)
    await store.delete(key)
    logger.info("files.deleted", file_id=str(file_id))
