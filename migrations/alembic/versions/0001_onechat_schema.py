"""OneChat schema - threads, messages, attachments, message_attachments

Revision ID: 0001
Revises:
Create Date: 2026-10-17

Ids are text: the client names new threads and messages, and users come
from the identity provider's subject claim.
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


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ==========================================================================
    # threads table
    # ==========================================================================
    op.create_table(
        "threads",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("visibility", sa.Text(), server_default="private", nullable=False),
        sa.Column("origin_thread_id", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        # Branches outlive the thread they were copied from
        sa.ForeignKeyConstraint(
            ["origin_thread_id"],
            ["threads.id"],
            ondelete="SET NULL",
        ),
        sa.CheckConstraint(
            "visibility IN ('private', 'public')",
            name="ck_threads_visibility",
        ),
    )
    op.create_index("ix_threads_user_id", "threads", ["user_id"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("thread_id", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("parts", postgresql.JSONB(), nullable=True),
        sa.Column("annotations", postgresql.JSONB(), nullable=True),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="done", nullable=False),
        sa.Column("is_errored", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("is_stopped", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attachment_ids", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["thread_id"],
            ["threads.id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system', 'data')",
            name="ck_messages_role",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'streaming', 'done', 'error', 'stopped')",
            name="ck_messages_status",
        ),
    )
    op.create_index(
        "ix_messages_thread_id_created_at", "messages", ["thread_id", "created_at"]
    )

    # Sweeper scan: unfinished assistant messages only
    op.execute(
        """
        CREATE INDEX ix_messages_unfinished_assistant
        ON messages (created_at)
        WHERE role = 'assistant' AND status IN ('pending', 'streaming')
        """
    )

    # ==========================================================================
    # attachments table
    # ==========================================================================
    op.create_table(
        "attachments",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("file_key", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("attachment_type", sa.Text(), server_default="file", nullable=False),
        sa.Column("attachment_url", sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("file_size >= 0", name="ck_attachments_file_size_nonneg"),
    )
    op.create_index("ix_attachments_user_id", "attachments", ["user_id"])

    # ==========================================================================
    # message_attachments table
    # ==========================================================================
    op.create_table(
        "message_attachments",
        sa.Column("message_id", sa.Text(), nullable=False),
        sa.Column("attachment_id", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("message_id", "attachment_id"),
        sa.ForeignKeyConstraint(
            ["message_id"],
            ["messages.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["attachment_id"],
            ["attachments.id"],
            ondelete="CASCADE",
        ),
    )


def downgrade() -> None:
    op.drop_table("message_attachments")
    op.drop_index("ix_attachments_user_id", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("ix_messages_unfinished_assistant", table_name="messages")
    op.drop_index("ix_messages_thread_id_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_threads_user_id", table_name="threads")
    op.drop_table("threads")
