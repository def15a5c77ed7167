"""Refyn schema - users, files, conversations, messages, notes

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the full schema for the feedback pipeline. conversations.session_id
is unique so concurrent first analyses of a session converge on one row.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("subscription_plan", sa.Text(), server_default="free", nullable=False),
        sa.Column("conversations_this_month", sa.Integer(), server_default="0", nullable=False),
        sa.Column("billing_period_start", sa.TIMESTAMP(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "subscription_plan IN ('free', 'standard', 'premium')",
            name="ck_users_subscription_plan",
        ),
        sa.CheckConstraint(
            "conversations_this_month >= 0", name="ck_users_conversations_non_negative"
        ),
    )

    # ==========================================================================
    # files table
    # ==========================================================================
    op.create_table(
        "files",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("filename", name="uq_files_filename"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("size >= 0", name="ck_files_size_non_negative"),
    )
    op.create_index("idx_files_session_created", "files", ["session_id", "created_at"])

    # ==========================================================================
    # conversations table
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=True),
        sa.Column("context_prompt", sa.Text(), nullable=False),
        sa.Column("media_type", sa.Text(), nullable=False),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", name="uq_conversations_session_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
    )
    op.create_index("idx_conversations_user_created", "conversations", ["user_id", "created_at"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint("role IN ('user', 'ai')", name="ck_messages_role"),
    )
    op.create_index(
        "uix_messages_conversation_seq", "messages", ["conversation_id", "seq"], unique=True
    )

    # ==========================================================================
    # notes table
    # ==========================================================================
    op.create_table(
        "notes",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("type", sa.String(50), server_default="manual", nullable=False),
        sa.Column("category", sa.String(100), server_default="general", nullable=False),
        sa.Column(
            "tags",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.CheckConstraint("type IN ('ai_extracted', 'manual')", name="ck_notes_type"),
        sa.CheckConstraint(
            "category IN ('technique', 'advice', 'resource', 'general')",
            name="ck_notes_category",
        ),
    )
    op.create_index("idx_notes_user_created", "notes", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_notes_user_created", table_name="notes")
    op.drop_table("notes")
    op.drop_index("uix_messages_conversation_seq", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_user_created", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_files_session_created", table_name="files")
    op.drop_table("files")
    op.drop_table("users")
