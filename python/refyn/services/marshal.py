"""Content marshaling: stored files to model content parts.

Each file's bytes are pulled through the BlobStore. Media the analysis model
accepts natively become inline base64 parts; anything else becomes a short
text description. A file whose bytes cannot be fetched (or are empty) is
skipped and the batch continues.
"""

import base64
from collections.abc import Sequence

from refyn.db.models import File
from refyn.logging import get_logger
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.llm.types import ContentPart, InlineDataPart, TextPart
from refyn.storage import BlobNotFoundError, BlobStore, StorageError

logger = get_logger(__name__)


def describe_file(file: File) -> str:
    """Text stand-in for a file the model cannot read inline."""
    size_kb = round(file.size / 1024)
    return f"File: {file.original_name} ({file.mime_type}, {size_kb}KB)"


async def marshal_files(
    files: Sequence[File],
    store: BlobStore,
    config: FeedbackConfig,
) -> list[ContentPart]:
    """Convert files into content parts, preserving input order.

    Files that fail to fetch are omitted; the rest keep their relative order.
    """
    parts: list[ContentPart] = []
    for file in files:
        try:
            data = await store.fetch(file.filename)
        except BlobNotFoundError:
            logger.warning("marshal.file_missing", file_id=str(file.id), blob_key=file.filename)
            continue
        except StorageError as e:
            logger.warning(
                "marshal.file_fetch_failed",
                file_id=str(file.id),
                blob_key=file.filename,
                error_code=e.code,
            )
            continue

        if not data:
            logger.warning("marshal.file_empty", file_id=str(file.id), blob_key=file.filename)
            continue

        if config.is_inline_mime(file.mime_type):
            parts.append(
                InlineDataPart(
                    mime_type=file.mime_type,
                    data=base64.b64encode(data).decode("ascii"),
                )
            )
        else:
            parts.append(TextPart(describe_file(file)))

    logger.info("marshal.completed", files_in=len(files), parts_out=len(parts))
    return parts
