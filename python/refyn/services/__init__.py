"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database, blob storage
and model calls.
"""

from refyn.services.bootstrap import ensure_user
from refyn.services.feedback_config import FeedbackConfig, build_feedback_config
from refyn.services.results import StepResult

__all__ = [
    "ensure_user",
    "FeedbackConfig",
    "build_feedback_config",
    "StepResult",
]
