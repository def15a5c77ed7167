"""Refyn persistence: engine, sessions and the ORM models."""

from refyn.db.engine import create_db_engine, get_engine
from refyn.db.models import (
    Base,
    Conversation,
    File,
    Message,
    MessageRole,
    Note,
    NoteCategory,
    NoteType,
    SubscriptionPlan,
    User,
)
from refyn.db.session import get_db, transaction

__all__ = [
    "Base",
    "Conversation",
    "File",
    "Message",
    "MessageRole",
    "Note",
    "NoteCategory",
    "NoteType",
    "SubscriptionPlan",
    "User",
    "create_db_engine",
    "get_db",
    "get_engine",
    "transaction",
]
