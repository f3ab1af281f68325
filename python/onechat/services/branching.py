"""Thread branch-out.

branch_out copies a thread's history up to and including a target message
into a new private thread:

- Messages are copied in created_at order
- Copies get ids {new_thread_id}-msg-{i} and timestamps now + i ms, so
  the original relative order survives
- Attachment links are copied with the messages
- The new thread's cache entry is written synchronously with the longer
  primed TTL; the user's thread list is invalidated

BranchOutMachine drives the same operation from a client's point of view,
with an optimistic "Cloning..." entry and rollback on failure.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from onechat.db.models import Message, MessageAttachment, Thread, ThreadVisibility
from onechat.errors import ApiError, ErrorType, NotFoundError, Surface, UnauthorizedError
from onechat.logging import get_logger
from onechat.schemas.thread import BranchOutResult, ThreadWithMessagesOut
from onechat.services.optimistic import LocalList, OptimisticMutation
from onechat.services.thread_cache import PRIMED_THREAD_CACHE_TTL_S, ThreadCache
from onechat.services.threads import messages_out, thread_header

logger = get_logger(__name__)

CLONING_TITLE = "Cloning..."


def branch_message_id(new_thread_id: str, index: int) -> str:
    return f"{new_thread_id}-msg-{index}"


def branch_out(
    db: Session,
    cache: ThreadCache,
    user_id: str,
    thread_id: str,
    message_id: str,
    new_thread_id: str | None = None,
) -> BranchOutResult:
    """Copy a thread up to and including a message into a new thread.

    Args:
        db: Database session.
        cache: Thread cache.
        user_id: The caller; becomes the new thread's owner.
        thread_id: The origin thread.
        message_id: The last message to copy.
        new_thread_id: Id for the new thread, generated when omitted.

    Returns:
        The new thread id and number of copied messages.

    Raises:
        NotFoundError(not_found:thread): Origin thread or target message missing.
        UnauthorizedError(unauthorized:thread): Origin thread owned by someone else.
        ApiError(bad_request:thread): Nothing to copy, or the new id is taken.
    """
    origin = db.get(Thread, thread_id)
    if origin is None:
        raise NotFoundError(Surface.THREAD, "Original thread not found")
    if origin.user_id != user_id:
        raise UnauthorizedError(Surface.THREAD, "Unauthorized")

    target = db.get(Message, message_id)
    if target is None or target.thread_id != thread_id:
        raise NotFoundError(Surface.THREAD, "Target message not found")

    to_copy = list(
        db.scalars(
            select(Message)
            .where(Message.thread_id == thread_id, Message.created_at <= target.created_at)
            .order_by(Message.created_at, Message.id)
        )
    )
    if not to_copy:
        raise ApiError("bad_request:thread", "No messages found to copy")

    new_thread_id = new_thread_id or str(uuid4())
    if db.get(Thread, new_thread_id) is not None:
        raise ApiError("bad_request:thread", "Thread id already exists")

    now = datetime.now(UTC)
    new_thread = Thread(
        id=new_thread_id,
        user_id=user_id,
        title=origin.title,
        visibility=ThreadVisibility.private.value,
        origin_thread_id=thread_id,
        created_at=now,
        updated_at=now,
    )
    db.add(new_thread)
    db.flush()

    attachment_links: dict[str, list[str]] = {}
    for row in db.execute(
        select(MessageAttachment.message_id, MessageAttachment.attachment_id).where(
            MessageAttachment.message_id.in_([m.id for m in to_copy])
        )
    ):
        attachment_links.setdefault(row.message_id, []).append(row.attachment_id)

    copies: list[Message] = []
    for index, source in enumerate(to_copy):
        stamp = now + timedelta(milliseconds=index)
        copy = Message(
            id=branch_message_id(new_thread_id, index),
            thread_id=new_thread_id,
            role=source.role,
            content=source.content,
            parts=source.parts,
            annotations=source.annotations,
            model=source.model,
            status=source.status,
            is_errored=source.is_errored,
            is_stopped=source.is_stopped,
            error_message=source.error_message,
            attachment_ids=source.attachment_ids,
            created_at=stamp,
            updated_at=stamp,
        )
        db.add(copy)
        copies.append(copy)
    db.flush()

    for source, copy in zip(to_copy, copies, strict=True):
        for attachment_id in attachment_links.get(source.id, []):
            db.add(MessageAttachment(message_id=copy.id, attachment_id=attachment_id))
    db.flush()
    db.commit()

    primed = ThreadWithMessagesOut(
        thread=thread_header(new_thread), messages=messages_out(db, copies)
    )
    cache.prime_thread(new_thread_id, primed.model_dump(mode="json"), PRIMED_THREAD_CACHE_TTL_S)
    cache.invalidate_user_threads(user_id)

    logger.info(
        "thread_branched",
        origin_thread_id=thread_id,
        thread_id=new_thread_id,
        message_count=len(copies),
    )
    return BranchOutResult(new_thread_id=new_thread_id, message_count=len(copies))


# =============================================================================
# Client-side state machine
# =============================================================================


class BranchState(str, Enum):
    IDLE = "idle"
    BRANCHING = "branching"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"


BRANCH_UNAUTHORIZED_MESSAGE = "You don't have permission to branch this thread"
BRANCH_NOT_FOUND_MESSAGE = "Message or thread not found"
BRANCH_GENERIC_MESSAGE = "Failed to branch out. Please try again."

BranchRemote = Callable[[str, str, str], Awaitable[BranchOutResult]]


def branch_error_message(error: Exception) -> str:
    """User-facing text for a failed branch-out."""
    if isinstance(error, ApiError):
        if error.type in (ErrorType.UNAUTHORIZED, ErrorType.FORBIDDEN):
            return BRANCH_UNAUTHORIZED_MESSAGE
        if error.type == ErrorType.NOT_FOUND:
            return BRANCH_NOT_FOUND_MESSAGE
    return BRANCH_GENERIC_MESSAGE


class BranchOutMachine:
    """idle -> branching -> settled_success | settled_error.

    While branching, further triggers are ignored (trigger returns None).
    A settled machine can be triggered again.

    Args:
        user_id: The acting user.
        thread_list: Local sidebar list receiving the optimistic entry.
        remote: Performs the branch: (thread_id, message_id, new_thread_id).
        navigate: Called with the new thread id as soon as branching starts.
    """

    def __init__(
        self,
        user_id: str,
        thread_list: LocalList[dict[str, Any]],
        remote: BranchRemote,
        navigate: Callable[[str], None] | None = None,
    ):
        self.user_id = user_id
        self.thread_list = thread_list
        self._remote = remote
        self._navigate = navigate
        self.state = BranchState.IDLE
        self.error_message: str | None = None
        self.result: BranchOutResult | None = None

    def _placeholder(self, thread_id: str, new_thread_id: str) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        return {
            "id": new_thread_id,
            "title": CLONING_TITLE,
            "user_id": self.user_id,
            "origin_thread_id": thread_id,
            "visibility": ThreadVisibility.private.value,
            "created_at": now,
            "updated_at": now,
            "last_message_at": now,
        }

    async def trigger(
        self, thread_id: str, message_id: str, new_thread_id: str | None = None
    ) -> BranchOutResult | None:
        if self.state == BranchState.BRANCHING:
            logger.debug("branch_out_ignored", thread_id=thread_id)
            return None

        new_thread_id = new_thread_id or str(uuid4())
        self.state = BranchState.BRANCHING
        self.error_message = None
        self.result = None

        def apply() -> None:
            self.thread_list.prepend(self._placeholder(thread_id, new_thread_id))
            if self._navigate is not None:
                self._navigate(new_thread_id)

        mutation = OptimisticMutation(
            snapshot=self.thread_list.snapshot,
            apply=apply,
            remote=lambda: self._remote(thread_id, message_id, new_thread_id),
            rollback=self.thread_list.restore,
            invalidate=lambda _result: self.thread_list.invalidate(),
        )

        try:
            self.result = await mutation.run()
        except Exception as e:
            self.state = BranchState.SETTLED_ERROR
            self.error_message = branch_error_message(e)
            logger.warning("branch_out_failed", thread_id=thread_id, error_type=type(e).__name__)
            return None

        self.state = BranchState.SETTLED_SUCCESS
        return self.result
