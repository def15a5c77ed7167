"""File upload, listing, content and delete routes.

All routes require authentication.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Response, UploadFile
from fastapi import File as FormFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.api.deps import get_blob_store, get_db, get_feedback_config
from refyn.auth.middleware import Viewer, get_viewer
from refyn.responses import success_response
from refyn.services import files as files_service
from refyn.services.feedback_config import FeedbackConfig
from refyn.storage import BlobStore, sanitize_name

router = APIRouter(prefix="/api", tags=["files"])


async def _read_upload(upload: UploadFile, limit: int) -> files_service.IncomingFile:
    # One byte past the limit is enough to reject an oversize file
    data = await upload.read(limit + 1)
    return files_service.IncomingFile(
        original_name=upload.filename or "file",
        mime_type=(upload.content_type or "application/octet-stream").lower(),
        data=data,
    )


@router.post("/upload", status_code=201)
async def upload_files(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    config: Annotated[FeedbackConfig, Depends(get_feedback_config)],
    session_id: Annotated[str | None, Form(alias="sessionId")] = None,
    files: Annotated[list[UploadFile] | None, FormFile()] = None,
) -> dict:
    """Upload files into a session.

    Errors:
        E_INVALID_REQUEST / E_NO_FILES / E_TOO_MANY_FILES /
        E_INVALID_FILE_TYPE / E_FILE_TOO_LARGE (400): nothing was stored.
        E_STORAGE_ERROR (500): no storage tier accepted the bytes.
    """
    uploads = files or []
    files_service.check_upload_request(session_id, len(uploads), config)
    items = [await _read_upload(u, config.max_upload_bytes) for u in uploads]
    uploaded = await files_service.upload_files(
        db,
        store,
        config,
        session_id=session_id,
        user_id=viewer.user_id,
        items=items,
    )
    return success_response({"files": [f.to_api() for f in uploaded]})


@router.get("/files/{session_id}")
def list_files(
    session_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Files uploaded into a session, in upload order."""
    files = files_service.list_session_files(db, viewer.user_id, session_id)
    return success_response({"files": [f.to_api() for f in files]})


@router.get("/files/{file_id}/content")
async def get_file_content(
    file_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    """Serve a file's bytes from whichever storage tier holds them.

    Errors:
        E_FILE_NOT_FOUND (404): Unknown file, not visible, or bytes missing.
    """
    file = await run_in_threadpool(files_service.get_file_for_viewer_or_404, db, viewer.user_id, file_id)
    data = await files_service.read_file_content(store, file)
    return Response(
        content=data,
        media_type=file.mime_type,
        headers={
            "Content-Disposition": f'inline; filename="{sanitize_name(file.original_name)}"',
            "Cache-Control": "private, max-age=3600",
        },
    )


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    """Delete a file the viewer owns.

    Errors:
        E_FILE_NOT_FOUND (404): Unknown file or owned by someone else.
    """
    await files_service.delete_file(db, store, viewer.user_id, file_id)
    return Response(status_code=204)
