"""SQLAlchemy ORM models for Refyn.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are dialect-neutral (Uuid, Timestamp, JSON) so the same models
back PostgreSQL in deployments and SQLite in the test suite; primary keys and
timestamps are generated application-side for the same reason.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


class Timestamp(TypeDecorator):
    """``DateTime(timezone=True)`` that always loads as an aware UTC datetime.

    PostgreSQL returns aware values already; SQLite drops the offset on
    storage, so naive results are read back as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class SubscriptionPlan(str, PyEnum):
    """Paid plans a user can hold. Academic access is derived from email."""

    free = "free"
    standard = "standard"
    premium = "premium"


class MessageRole(str, PyEnum):
    """Author of a message in a conversation."""

    user = "user"
    ai = "ai"


class NoteType(str, PyEnum):
    """How a note came to exist."""

    ai_extracted = "ai_extracted"
    manual = "manual"


class NoteCategory(str, PyEnum):
    """Note categories.

    The first three are the only ones the note extractor may produce;
    general is the default for manually written notes.
    """

    technique = "technique"
    advice = "advice"
    resource = "resource"
    general = "general"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the Supabase auth user ID (sub claim). Usage counters
    live on this row; the effective quota is derived, never stored.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    subscription_plan: Mapped[str] = mapped_column(
        Text, nullable=False, default=SubscriptionPlan.free.value, server_default="free"
    )
    conversations_this_month: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    billing_period_start: Mapped[datetime | None] = mapped_column(
        Timestamp(), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_plan IN ('free', 'standard', 'premium')",
            name="ck_users_subscription_plan",
        ),
        CheckConstraint(
            "conversations_this_month >= 0",
            name="ck_users_conversations_non_negative",
        ),
    )


class File(Base):
    """An uploaded creative asset.

    `filename` is the server-generated blob key; the bytes live in exactly one
    blob tier under that key.
    """

    __tablename__ = "files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    filename: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("size >= 0", name="ck_files_size_non_negative"),
        Index("idx_files_session_created", "session_id", "created_at"),
    )


class Conversation(Base):
    """The AI-feedback thread bound to one upload session.

    session_id is unique: lookup-or-create relies on the constraint to settle
    concurrent first analyses. media_type and context_prompt are set once.
    """

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    context_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    media_type: Mapped[str] = mapped_column(Text, nullable=False)
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        Index("idx_conversations_user_created", "user_id", "created_at"),
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.seq",
    )
    notes: Mapped[list["Note"]] = relationship(
        "Note", back_populates="conversation", cascade="all, delete-orphan", passive_deletes=True
    )


class Message(Base):
    """One append-only turn in a conversation.

    seq is assigned from conversations.next_seq at insert time, so ordering by
    seq is creation order even when timestamps collide.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint("role IN ('user', 'ai')", name="ck_messages_role"),
        Index("uix_messages_conversation_seq", "conversation_id", "seq", unique=True),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class Note(Base):
    """An extracted or manually authored insight."""

    __tablename__ = "notes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=NoteType.manual.value, server_default="manual"
    )
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default=NoteCategory.general.value, server_default="general"
    )
    tags: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("type IN ('ai_extracted', 'manual')", name="ck_notes_type"),
        CheckConstraint(
            "category IN ('technique', 'advice', 'resource', 'general')",
            name="ck_notes_category",
        ),
        Index("idx_notes_user_created", "user_id", "created_at"),
    )

    # Relationships
    conversation: Mapped["Conversation | None"] = relationship(
        "Conversation", back_populates="notes"
    )
