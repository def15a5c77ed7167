"""Sessions for request handlers and services.

Sessions are synchronous. Async handlers and orchestrators hand each unit of
database work to ``run_in_threadpool`` together with the request's session.
Objects stay usable after commit (``expire_on_commit=False``) because the
orchestrators keep reading conversations and files between steps.
"""

from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from refyn.db.engine import get_engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory bound to ``engine`` (the process engine when omitted)."""
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit the enclosed writes, or roll them back and re-raise.

    Usage:
        with transaction(db):
            db.add(conversation)
            record_conversation_started(db, user_id)
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
