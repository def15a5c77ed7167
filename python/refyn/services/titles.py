"""Best-effort AI titles for uploaded images.

An image without a title gets one model call with a fixed instruction plus a
downscaled preview. The result is persisted once. Failures are returned as
StepResult failures and never raised.
"""

import base64
from collections.abc import Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from refyn.db.models import File
from refyn.db.session import transaction
from refyn.logging import get_logger
from refyn.services.feedback_config import FeedbackConfig
from refyn.services.images import ImagePreviewError, build_preview
from refyn.services.llm import (
    InlineDataPart,
    LLMCallContext,
    LLMError,
    LLMOperation,
    LLMRequest,
    LLMRouter,
    TextPart,
    Turn,
)
from refyn.services.prompts import TITLE_INSTRUCTION
from refyn.services.results import StepResult
from refyn.storage import BlobStore, StorageError

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 255

_QUOTE_CHARS = "\"'`“”‘’"


def needs_title(file: File) -> bool:
    return file.mime_type.lower().startswith("image/") and not file.title


def clean_title(raw: str) -> str:
    """First non-empty line, surrounding quotes removed, whitespace collapsed."""
    line = next((ln for ln in raw.splitlines() if ln.strip()), "")
    title = " ".join(line.split()).strip(_QUOTE_CHARS).strip()
    return title[:MAX_TITLE_LENGTH]


def _save_title(db: Session, file_id, title: str) -> bool:
    with transaction(db):
        result = db.execute(
            update(File).where(File.id == file_id, File.title.is_(None)).values(title=title)
        )
    return result.rowcount > 0


async def _generate_title(
    file: File,
    *,
    store: BlobStore,
    router: LLMRouter,
    config: FeedbackConfig,
) -> str:
    data = await store.fetch(file.filename)
    if not data:
        raise StorageError("Empty object", code="E_STORAGE_EMPTY")

    preview_mime, preview = await run_in_threadpool(build_preview, data, file.mime_type)

    request = LLMRequest(
        model_name=config.analysis_model,
        messages=[
            Turn(
                role="user",
                parts=(
                    TextPart(TITLE_INSTRUCTION),
                    InlineDataPart(preview_mime, base64.b64encode(preview).decode("ascii")),
                ),
            )
        ],
        max_tokens=config.title_max_tokens,
        temperature=0.4,
    )
    response = await router.generate(
        config.analysis_provider,
        request,
        config.analysis_api_key,
        timeout_s=config.llm_timeout_s,
        call_context=LLMCallContext(operation=LLMOperation.TITLE, file_id=str(file.id)),
    )
    return clean_title(response.text)


async def ensure_title(
    db: Session,
    file: File,
    *,
    store: BlobStore,
    router: LLMRouter,
    config: FeedbackConfig,
) -> StepResult[str]:
    """Give an untitled image a title. Never raises.

    Returns:
        StepResult with the title (or the existing one, or None for
        non-images), or a failure describing what went wrong.
    """
    if not needs_title(file):
        return StepResult.success(file.title)

    try:
        title = await _generate_title(file, store=store, router=router, config=config)
    except StorageError as e:
        return StepResult.failure(f"fetch failed: {e.code}")
    except ImagePreviewError as e:
        return StepResult.failure(str(e))
    except LLMError as e:
        return StepResult.failure(f"model call failed: {e.error_class.value}")
    except Exception as e:
        logger.exception("titles.unexpected_error", file_id=str(file.id))
        return StepResult.failure(f"unexpected error: {type(e).__name__}")

    if not title:
        return StepResult.failure("model returned an empty title")

    try:
        await run_in_threadpool(_save_title, db, file.id, title)
    except SQLAlchemyError as e:
        return StepResult.failure(f"persist failed: {type(e).__name__}")

    return StepResult.success(title)


async def ensure_titles(
    db: Session,
    files: Sequence[File],
    *,
    store: BlobStore,
    router: LLMRouter,
    config: FeedbackConfig,
) -> list[StepResult[str]]:
    """Title every eligible file in order, one at a time.

    Returns one result per image that lacked a title.
    """
    results: list[StepResult[str]] = []
    for file in files:
        if not needs_title(file):
            continue
        result = await ensure_title(db, file, store=store, router=router, config=config)
        if not result.ok:
            logger.warning("titles.failed", file_id=str(file.id), error=result.error)
        results.append(result)
    return results
