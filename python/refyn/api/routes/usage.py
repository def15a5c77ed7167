"""Usage routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from refyn.api.deps import get_db, get_feedback_config
from refyn.auth.middleware import Viewer, get_viewer
from refyn.responses import success_response
from refyn.schemas import UsageOut
from refyn.services import usage as usage_service
from refyn.services.feedback_config import FeedbackConfig

router = APIRouter(prefix="/api", tags=["usage"])


@router.get("/usage")
def get_usage(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    config: Annotated[FeedbackConfig, Depends(get_feedback_config)],
) -> dict:
    """Viewer's plan, monthly conversation usage and remaining quota."""
    status = usage_service.usage_status(db, viewer.user_id, config)
    return success_response(UsageOut.model_validate(status).to_api())
