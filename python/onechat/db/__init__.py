"""Database module for OneChat.

Engine, sessions and the ORM models for threads, messages and attachments.
"""

from onechat.db.engine import create_db_engine, get_engine, normalize_database_url
from onechat.db.models import (
    Attachment,
    AttachmentType,
    Base,
    Message,
    MessageAttachment,
    MessageRole,
    MessageStatus,
    Thread,
    ThreadVisibility,
)
from onechat.db.session import get_db, session_scope

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "normalize_database_url",
    "get_db",
    "session_scope",
    # Base
    "Base",
    # Enums
    "ThreadVisibility",
    "MessageRole",
    "MessageStatus",
    "AttachmentType",
    # Models
    "Thread",
    "Message",
    "Attachment",
    "MessageAttachment",
]
