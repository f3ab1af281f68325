"""SQLAlchemy ORM models for OneChat.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable: PostgreSQL in production, SQLite in tests.
Ids are application-supplied strings (the client names new threads and
messages), so there are no server-generated primary keys.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Portable column types
# =============================================================================


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamp on every backend.

    PostgreSQL stores timestamptz. SQLite has no timezone support, so values
    are stored as naive UTC and re-tagged with UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
            if dialect.name != "postgresql":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


JSONColumn = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# Enums
# =============================================================================


class ThreadVisibility(str, PyEnum):
    """Who may read a thread through its share URL."""

    private = "private"
    public = "public"


class MessageRole(str, PyEnum):
    """Roles for messages in a thread."""

    user = "user"
    assistant = "assistant"
    system = "system"
    data = "data"


class MessageStatus(str, PyEnum):
    """Lifecycle of a message.

    States:
        pending: Created, generation not started
        streaming: Partial content persisted during generation
        done: Generation complete
        error: Generation failed; error_message holds the reason
        stopped: Generation aborted by the user
    """

    pending = "pending"
    streaming = "streaming"
    done = "done"
    error = "error"
    stopped = "stopped"


class AttachmentType(str, PyEnum):
    """Origin of an attachment."""

    file = "file"
    image = "image"
    generated_image = "generated-image"


# =============================================================================
# Threads and messages
# =============================================================================


class Thread(Base):
    """Thread model - a conversation owned by one user."""

    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="New Thread")
    visibility: Mapped[str] = mapped_column(
        Text, nullable=False, default=ThreadVisibility.private.value, server_default="private"
    )
    origin_thread_id: Mapped[str | None] = mapped_column(
        Text,
        ForeignKey("threads.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "visibility IN ('private', 'public')",
            name="ck_threads_visibility",
        ),
        Index("ix_threads_user_id", "user_id"),
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.created_at",
    )


class Message(Base):
    """Message model - one turn in a thread."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    thread_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    parts: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONColumn, nullable=True)
    annotations: Mapped[list[Any] | None] = mapped_column(JSONColumn, nullable=True)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=MessageStatus.done.value, server_default="done"
    )
    is_errored: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_stopped: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_ids: Mapped[list[str] | None] = mapped_column(JSONColumn, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'assistant', 'system', 'data')",
            name="ck_messages_role",
        ),
        CheckConstraint(
            "status IN ('pending', 'streaming', 'done', 'error', 'stopped')",
            name="ck_messages_status",
        ),
        Index("ix_messages_thread_id_created_at", "thread_id", "created_at"),
    )

    # Relationships
    thread: Mapped["Thread"] = relationship("Thread", back_populates="messages")
    attachment_links: Mapped[list["MessageAttachment"]] = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# =============================================================================
# Attachments
# =============================================================================


class Attachment(Base):
    """Attachment model - an uploaded or generated file in blob storage."""

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    file_key: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_type: Mapped[str] = mapped_column(
        Text, nullable=False, default=AttachmentType.file.value, server_default="file"
    )
    attachment_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("file_size >= 0", name="ck_attachments_file_size_nonneg"),
        Index("ix_attachments_user_id", "user_id"),
    )

    message_links: Mapped[list["MessageAttachment"]] = relationship(
        "MessageAttachment",
        back_populates="attachment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MessageAttachment(Base):
    """Link between a message and one of its attachments."""

    __tablename__ = "message_attachments"

    message_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    attachment_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("attachments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    message: Mapped["Message"] = relationship("Message", back_populates="attachment_links")
    attachment: Mapped["Attachment"] = relationship("Attachment", back_populates="message_links")
