"""Monthly conversation quota.

A quota unit is one conversation creation. Follow-up messages never consume
quota. The counter lives on the users row and is reset when the billing
month has rolled over.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from refyn.db.models import SubscriptionPlan, User, utcnow
from refyn.db.session import transaction
from refyn.errors import ApiError, ApiErrorCode
from refyn.logging import get_logger
from refyn.services.feedback_config import FeedbackConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class UsageCheck:
    """Outcome of a quota check."""

    allowed: bool
    used: int
    limit: int


@dataclass(frozen=True)
class UsageStatus:
    """Current usage as shown to the user."""

    plan: str
    academic: bool
    used: int
    limit: int
    remaining: int
    billing_period_start: datetime | None


def months_between(start: datetime, now: datetime) -> int:
    """Whole calendar months elapsed from start to now.

    Both values must be timezone-aware. Jan 31 -> Feb 28 is 0 months;
    Jan 15 10:00 -> Feb 15 10:00 is 1 month.
    """
    now = now.astimezone(start.tzinfo)
    months = (now.year - start.year) * 12 + (now.month - start.month)
    if (now.day, now.time()) < (start.day, start.time()):
        months -= 1
    return months


def is_academic_email(email: str | None, labels: frozenset[str]) -> bool:
    """True for addresses like a@mit.edu, a@ox.ac.uk or a@unimelb.edu.au."""
    if not email or "@" not in email:
        return False
    domain = email.rsplit("@", 1)[1].strip().lower().rstrip(".")
    parts = [p for p in domain.split(".") if p]
    if len(parts) < 2:
        return False
    return parts[-1] in labels or parts[-2] in labels


def quota_for(user: User, config: FeedbackConfig) -> int:
    """Effective monthly quota. Academic email outranks any plan."""
    if is_academic_email(user.email, config.academic_domain_labels):
        return config.quotas.academic
    if user.subscription_plan == SubscriptionPlan.premium.value:
        return config.quotas.premium
    if user.subscription_plan == SubscriptionPlan.standard.value:
        return config.quotas.standard
    return config.quotas.free


def _load_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "User not found")
    return user


def check_and_maybe_reset(
    db: Session,
    user_id: UUID,
    config: FeedbackConfig,
    *,
    now: datetime | None = None,
) -> UsageCheck:
    """Decide whether the user may start a new conversation.

    Resets the counter first when a month or more has passed since the
    billing period started; a reset call is always allowed.

    Raises:
        ApiError(E_UNAUTHENTICATED): If the user row does not exist.
    """
    now = now or utcnow()
    user = _load_user(db, user_id)
    limit = quota_for(user, config)

    start = user.billing_period_start
    if start is None or months_between(start, now) >= 1:
        with transaction(db):
            user.conversations_this_month = 0
            user.billing_period_start = now
        logger.info("usage.period_reset", user_id=str(user_id), limit=limit)
        return UsageCheck(allowed=True, used=0, limit=limit)

    used = user.conversations_this_month
    return UsageCheck(allowed=used < limit, used=used, limit=limit)


def record_conversation_started(db: Session, user_id: UUID) -> None:
    """Consume one quota unit.

    Atomic increment in SQL. Does NOT commit: it runs inside the caller's
    transaction together with the conversation insert.
    """
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            conversations_this_month=User.conversations_this_month + 1,
            updated_at=utcnow(),
        )
    )


def usage_status(
    db: Session,
    user_id: UUID,
    config: FeedbackConfig,
    *,
    now: datetime | None = None,
) -> UsageStatus:
    """Usage numbers for display, applying any pending month rollover."""
    check = check_and_maybe_reset(db, user_id, config, now=now)
    user = _load_user(db, user_id)
    return UsageStatus(
        plan=user.subscription_plan,
        academic=is_academic_email(user.email, config.academic_domain_labels),
        used=check.used,
        limit=check.limit,
        remaining=max(check.limit - check.used, 0),
        billing_period_start=user.billing_period_start,
    )
