"""User bootstrap service.

Ensures a users row exists for every authenticated subject and keeps the
stored email in step with the token's email claim. The email drives the
academic quota tier.
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refyn.db.models import User
from refyn.db.session import transaction
from refyn.logging import get_logger

logger = get_logger(__name__)


def ensure_user(db: Session, user_id: UUID, email: str | None = None) -> User:
    """Create or refresh the user row. Race-safe and idempotent.

    A concurrent first request may insert the same id; the loser rolls back
    and re-reads. An email already held by another account is not copied.

    Raises:
        RuntimeError: If the row cannot be found after race recovery.
    """
    user = db.get(User, user_id)
    if user is None:
        try:
            with transaction(db):
                user = User(id=user_id, email=email)
                db.add(user)
            logger.info("user.created", user_id=str(user_id))
            return user
        except IntegrityError:
            # Lost race on id, or the email belongs to another row
            user = db.get(User, user_id)
            if user is None:
                with transaction(db):
                    user = User(id=user_id, email=None)
                    db.add(user)
                logger.warning("user.email_conflict", user_id=str(user_id))
                return user

    if email and user.email != email:
        try:
            with transaction(db):
                user.email = email
        except IntegrityError:
            logger.warning("user.email_conflict", user_id=str(user_id))
            db.refresh(user)

    return user
