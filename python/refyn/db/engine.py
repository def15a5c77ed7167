"""Engine construction.

One engine per process, built lazily from DATABASE_URL. Deployments run on
PostgreSQL through psycopg 3 (``postgresql+psycopg://...``); a SQLite URL is
accepted for local runs and the test suite.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from refyn.config import get_settings


def _connect_args(database_url: str) -> dict:
    # Blocking session work runs on starlette's threadpool, so a SQLite
    # connection is used from threads other than the one that opened it
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def create_db_engine(database_url: str | None = None) -> Engine:
    """Build an engine for ``database_url`` (settings value when omitted)."""
    url = database_url or get_settings().database_url
    return create_engine(url, pool_pre_ping=True, connect_args=_connect_args(url))


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine."""
    return create_db_engine()
