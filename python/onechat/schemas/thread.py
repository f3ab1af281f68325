"""Thread, message and attachment Pydantic schemas.

Response models are also the cached representation: services store
``model_dump(mode="json")`` in redis and rebuild with ``model_validate``.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Valid values - must match DB constraints
THREAD_VISIBILITIES = Literal["private", "public"]
MESSAGE_ROLES = Literal["user", "assistant", "system", "data"]
MESSAGE_STATUSES = Literal["pending", "streaming", "done", "error", "stopped"]


# =============================================================================
# Response Schemas
# =============================================================================


class AttachmentOut(BaseModel):
    id: str
    user_id: str
    file_key: str
    file_name: str
    file_size: int
    mime_type: str
    attachment_type: str
    attachment_url: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """One message, with its linked attachments."""

    id: str
    thread_id: str
    role: str
    content: str | None = None
    parts: list[dict[str, Any]] | None = None
    annotations: list[Any] | None = None
    model: str | None = None
    status: str = "done"
    is_errored: bool = False
    is_stopped: bool = False
    error_message: str | None = None
    attachment_ids: list[str] | None = None
    attachments: list[AttachmentOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ThreadOut(BaseModel):
    id: str
    title: str
    user_id: str
    visibility: str
    origin_thread_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ThreadHeaderOut(BaseModel):
    """Thread fields shown above a message list."""

    id: str
    title: str
    user_id: str
    visibility: str

    model_config = ConfigDict(from_attributes=True)


class ThreadWithMessagesOut(BaseModel):
    thread: ThreadHeaderOut
    messages: list[MessageOut]


class ThreadListItemOut(BaseModel):
    """Sidebar entry. last_message_at is None for threads with no messages."""

    id: str
    title: str
    user_id: str
    visibility: str
    origin_thread_id: str | None = None
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None = None


class ThreadGroupOut(BaseModel):
    label: str
    threads: list[ThreadListItemOut]


class GroupedThreadsOut(BaseModel):
    groups: list[ThreadGroupOut]
    pinned_thread_ids: list[str]


class RetryOut(BaseModel):
    """History to resend when retrying an assistant message."""

    thread_id: str
    model: str | None
    messages_up_to_retry: list[MessageOut]


class BranchOutResult(BaseModel):
    new_thread_id: str
    message_count: int


class PartialShareOut(BaseModel):
    token: str
    thread_id: str
    message_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime


class PartialThreadOut(BaseModel):
    """A thread truncated at a message, re-labelled as a public thread."""

    thread: ThreadHeaderOut
    messages: list[MessageOut]
    is_partial_share: bool = True
    original_thread_id: str
    cutoff_message_id: str


class AttachmentStatsOut(BaseModel):
    total_files: int
    total_size: int
    image_count: int
    file_count: int


# =============================================================================
# Request Schemas
# =============================================================================


class MessageIn(BaseModel):
    """A client-side message, as persisted by upsert."""

    id: str = Field(..., min_length=1)
    role: MESSAGE_ROLES
    content: str | None = ""
    parts: list[dict[str, Any]] | None = None
    annotations: list[Any] | None = None
    attachment_ids: list[str] | None = None


class RenameThreadRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)

    model_config = ConfigDict(str_strip_whitespace=True)


class BranchOutRequest(BaseModel):
    message_id: str = Field(..., min_length=1)
    new_thread_id: str | None = None


class GenerateTitleRequest(BaseModel):
    user_query: str = Field(..., min_length=1, max_length=20000)
    # Queue on the worker with the platform key instead of answering inline
    background: bool = False


class CreatePartialShareRequest(BaseModel):
    thread_id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)
