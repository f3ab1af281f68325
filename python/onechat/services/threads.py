"""Thread and message store.

Threads and messages live in the database; reads go through ThreadCache.
Every mutation invalidates the affected cache entries through the cache's
effect scheduler, so the invalidation lands after the response.

Ordering:
- Messages in a thread are ordered by created_at
- The thread list is ordered by the newest message, falling back to the
  thread's updated_at for threads without messages

Trailing deletes:
- delete_trailing_messages removes created_at > reference (reference kept)
- delete_message_and_trailing removes created_at >= reference (reference removed)

Service functions correspond 1:1 with route handlers.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from onechat.db.models import (
    Attachment,
    Message,
    MessageAttachment,
    MessageRole,
    MessageStatus,
    Thread,
    ThreadVisibility,
)
from onechat.errors import ApiError, ForbiddenError, NotFoundError, Surface
from onechat.logging import get_logger
from onechat.schemas.thread import (
    AttachmentOut,
    MessageIn,
    MessageOut,
    RetryOut,
    ThreadHeaderOut,
    ThreadListItemOut,
    ThreadOut,
    ThreadWithMessagesOut,
)
from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import DEFAULT_CHAT_MODEL
from onechat.services.llm import LLMCallContext, LLMOperation, LLMRequest, LLMRouter, Turn
from onechat.services.routing import resolve_model
from onechat.services.thread_cache import ThreadCache

logger = get_logger(__name__)

DEFAULT_THREAD_TITLE = "New Thread"
MAX_TITLE_CHARS = 60

TITLE_PROMPT_TEMPLATE = (
    "Generate a concise title for the following user query (max 60 characters). \n"
    "    Return only the title text, without any preambles or markdown formatting.\n"
    '    User Query: "{user_query}"'
)


# =============================================================================
# Conversions
# =============================================================================


def attachment_to_out(attachment: Attachment) -> AttachmentOut:
    return AttachmentOut.model_validate(attachment)


def message_to_out(message: Message, attachments: list[AttachmentOut] | None = None) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    return MessageOut(
        id=message.id,
        thread_id=message.thread_id,
        role=message.role,
        content=message.content,
        parts=message.parts,
        annotations=message.annotations,
        model=message.model,
        status=message.status,
        is_errored=message.is_errored,
        is_stopped=message.is_stopped,
        error_message=message.error_message,
        attachment_ids=message.attachment_ids,
        attachments=attachments or [],
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def thread_to_out(thread: Thread) -> ThreadOut:
    return ThreadOut.model_validate(thread)


def thread_header(thread: Thread) -> ThreadHeaderOut:
    return ThreadHeaderOut(
        id=thread.id,
        title=thread.title or DEFAULT_THREAD_TITLE,
        user_id=thread.user_id,
        visibility=thread.visibility,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Lookups
# =============================================================================


def get_thread(db: Session, thread_id: str) -> Thread | None:
    return db.get(Thread, thread_id)


def get_owned_thread_or_raise(
    db: Session, user_id: str, thread_id: str, surface: Surface = Surface.THREAD
) -> Thread:
    """Load a thread and verify ownership.

    Raises:
        NotFoundError: If the thread doesn't exist.
        ForbiddenError: If the thread belongs to another user.
    """
    thread = db.get(Thread, thread_id)
    if thread is None:
        raise NotFoundError(surface, "Thread not found")
    if thread.user_id != user_id:
        raise ForbiddenError(surface, "Thread not found or access denied")
    return thread


def _get_message_in_thread(db: Session, thread_id: str, message_id: str) -> Message:
    message = db.get(Message, message_id)
    if message is None or message.thread_id != thread_id:
        raise NotFoundError(Surface.THREAD, "Message not found in this thread")
    return message


def _attachments_by_message(db: Session, message_ids: list[str]) -> dict[str, list[AttachmentOut]]:
    if not message_ids:
        return {}
    rows = db.execute(
        select(MessageAttachment.message_id, Attachment)
        .join(Attachment, Attachment.id == MessageAttachment.attachment_id)
        .where(MessageAttachment.message_id.in_(message_ids))
        .order_by(Attachment.created_at)
    ).all()
    result: dict[str, list[AttachmentOut]] = {}
    for message_id, attachment in rows:
        result.setdefault(message_id, []).append(attachment_to_out(attachment))
    return result


def messages_out(db: Session, messages: list[Message]) -> list[MessageOut]:
    attachments = _attachments_by_message(db, [m.id for m in messages])
    return [message_to_out(m, attachments.get(m.id)) for m in messages]


def _query_thread_messages(
    db: Session, thread_id: str, *, until: datetime | None = None, before: datetime | None = None
) -> list[Message]:
    stmt = select(Message).where(Message.thread_id == thread_id)
    if until is not None:
        stmt = stmt.where(Message.created_at <= until)
    if before is not None:
        stmt = stmt.where(Message.created_at < before)
    return list(db.scalars(stmt.order_by(Message.created_at, Message.id)))


# =============================================================================
# Threads
# =============================================================================


def get_or_create_thread(
    db: Session, cache: ThreadCache, thread_id: str, user_id: str
) -> ThreadOut:
    """Return the thread, creating an empty private one on first use.

    Raises:
        ForbiddenError(forbidden:chat): If the id belongs to another user's thread.
    """
    thread = db.get(Thread, thread_id)
    if thread is not None:
        if thread.user_id != user_id:
            raise ForbiddenError(Surface.CHAT)
        return thread_to_out(thread)

    thread = Thread(
        id=thread_id,
        user_id=user_id,
        title=DEFAULT_THREAD_TITLE,
        visibility=ThreadVisibility.private.value,
    )
    db.add(thread)
    db.flush()
    db.commit()

    cache.invalidate_user_threads(user_id)
    logger.info("thread_created", thread_id=thread_id, user_id=user_id)
    return thread_to_out(thread)


def get_thread_with_messages(
    db: Session, cache: ThreadCache, thread_id: str
) -> ThreadWithMessagesOut | None:
    """Thread header and ordered messages, read through the cache."""
    cached = cache.get_thread(thread_id)
    if cached is not None:
        return ThreadWithMessagesOut.model_validate(cached)

    thread = db.get(Thread, thread_id)
    if thread is None:
        return None

    result = ThreadWithMessagesOut(
        thread=thread_header(thread),
        messages=messages_out(db, _query_thread_messages(db, thread_id)),
    )
    cache.set_thread(thread_id, result.model_dump(mode="json"))
    return result


def load_chat(db: Session, cache: ThreadCache, thread_id: str) -> list[MessageOut]:
    """Messages of a thread in order; empty when the thread doesn't exist."""
    data = get_thread_with_messages(db, cache, thread_id)
    return data.messages if data else []


def list_thread_messages(db: Session, thread_id: str) -> list[MessageOut]:
    """Messages of a thread straight from the database, bypassing the cache.

    Used right after a write whose cache invalidation is still deferred.
    """
    return messages_out(db, _query_thread_messages(db, thread_id))


def get_user_threads(db: Session, cache: ThreadCache, user_id: str) -> list[ThreadListItemOut]:
    """The user's threads, most recently active first."""
    cached = cache.get_user_threads(user_id)
    if cached is not None:
        return [ThreadListItemOut.model_validate(item) for item in cached]

    last_message_at = func.max(Message.created_at)
    rows = db.execute(
        select(Thread, last_message_at.label("last_message_at"))
        .outerjoin(Message, Message.thread_id == Thread.id)
        .where(Thread.user_id == user_id)
        .group_by(Thread.id)
        .order_by(func.coalesce(last_message_at, Thread.updated_at).desc(), Thread.id)
    ).all()

    items = [
        ThreadListItemOut(
            id=thread.id,
            title=thread.title or DEFAULT_THREAD_TITLE,
            user_id=thread.user_id,
            visibility=thread.visibility,
            origin_thread_id=thread.origin_thread_id,
            created_at=thread.created_at,
            updated_at=thread.updated_at,
            last_message_at=last_at,
        )
        for thread, last_at in rows
    ]
    cache.set_user_threads(user_id, [item.model_dump(mode="json") for item in items])
    return items


def delete_chat(db: Session, cache: ThreadCache, user_id: str, thread_id: str) -> None:
    """Delete a thread. Messages cascade; branches keep living with origin cleared.

    Raises:
        NotFoundError / ForbiddenError: Owner check.
    """
    get_owned_thread_or_raise(db, user_id, thread_id)

    db.execute(delete(Thread).where(Thread.id == thread_id))
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    logger.info("thread_deleted", thread_id=thread_id, user_id=user_id)


def toggle_thread_visibility(
    db: Session, cache: ThreadCache, user_id: str, thread_id: str
) -> ThreadOut:
    """Flip private <-> public. Owner only."""
    thread = get_owned_thread_or_raise(db, user_id, thread_id)
    thread.visibility = (
        ThreadVisibility.private.value
        if thread.visibility == ThreadVisibility.public.value
        else ThreadVisibility.public.value
    )
    thread.updated_at = _utcnow()
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    logger.info("thread_visibility_changed", thread_id=thread_id, visibility=thread.visibility)
    return thread_to_out(thread)


def rename_thread(
    db: Session, cache: ThreadCache, user_id: str, thread_id: str, title: str
) -> ThreadOut:
    thread = get_owned_thread_or_raise(db, user_id, thread_id)
    thread.title = title[:MAX_TITLE_CHARS]
    thread.updated_at = _utcnow()
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    return thread_to_out(thread)


def get_public_thread(
    db: Session, cache: ThreadCache, thread_id: str, viewer_id: str | None = None
) -> ThreadWithMessagesOut:
    """Share-page read.

    Public threads are readable by anyone; private threads only by their owner.
    Everyone else gets not_found, the same answer as a missing id.
    """
    data = get_thread_with_messages(db, cache, thread_id)
    if data is None:
        raise NotFoundError(Surface.THREAD)
    if data.thread.visibility != ThreadVisibility.public.value and data.thread.user_id != viewer_id:
        raise NotFoundError(Surface.THREAD)
    return data


# =============================================================================
# Messages
# =============================================================================


def upsert_message(
    db: Session,
    cache: ThreadCache,
    *,
    thread_id: str,
    message: MessageIn,
    model: str | None = None,
    status: str = MessageStatus.done.value,
    attachment_ids: list[str] | None = None,
    error_message: str | None = None,
) -> MessageOut:
    """Insert a message, or update it in place when the id already exists.

    Status drives the error/stopped flags. Attachment ids passed explicitly
    win over the ones carried on the message.

    Raises:
        ForbiddenError(forbidden:chat): The id belongs to a message of another thread.
    """
    ids = attachment_ids if attachment_ids is not None else message.attachment_ids
    now = _utcnow()

    row = db.get(Message, message.id)
    if row is not None and row.thread_id != thread_id:
        logger.warning("message_thread_mismatch", message_id=message.id, thread_id=thread_id)
        raise ForbiddenError(Surface.CHAT, "Message belongs to another thread")
    if row is None:
        row = Message(
            id=message.id,
            thread_id=thread_id,
            role=message.role,
            created_at=now,
        )
        db.add(row)

    row.content = message.content
    row.parts = message.parts
    if message.annotations is not None:
        row.annotations = message.annotations
    row.model = model
    row.status = status
    row.is_errored = status == MessageStatus.error.value
    row.is_stopped = status == MessageStatus.stopped.value
    row.error_message = error_message
    row.attachment_ids = ids
    row.updated_at = now

    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    thread = db.get(Thread, thread_id)
    if thread is not None:
        cache.invalidate_user_threads(thread.user_id)

    return message_to_out(row, get_message_attachments(db, row.id))


def set_message_status(
    db: Session,
    cache: ThreadCache,
    message_id: str,
    status: str,
    *,
    error_message: str | None = None,
) -> MessageOut | None:
    """Move a message to a new status without touching its content."""
    row = db.get(Message, message_id)
    if row is None:
        return None
    row.status = status
    row.is_errored = status == MessageStatus.error.value
    row.is_stopped = status == MessageStatus.stopped.value
    if error_message is not None:
        row.error_message = error_message
    row.updated_at = _utcnow()
    db.flush()
    db.commit()

    cache.invalidate_thread(row.thread_id)
    return message_to_out(row)


def delete_message(db: Session, cache: ThreadCache, user_id: str, message_id: str) -> None:
    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError(Surface.THREAD, "Message not found")
    thread_id = message.thread_id
    get_owned_thread_or_raise(db, user_id, thread_id)

    db.execute(delete(Message).where(Message.id == message_id))
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)


def delete_trailing_messages(
    db: Session, cache: ThreadCache, user_id: str, thread_id: str, message_id: str
) -> int:
    """Delete messages created strictly after the reference message.

    Returns:
        Number of deleted messages. The reference message survives.
    """
    get_owned_thread_or_raise(db, user_id, thread_id)
    reference = _get_message_in_thread(db, thread_id, message_id)

    result = db.execute(
        delete(Message).where(
            Message.thread_id == thread_id,
            Message.created_at > reference.created_at,
        )
    )
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    logger.info("trailing_messages_deleted", thread_id=thread_id, count=result.rowcount)
    return result.rowcount


def delete_message_and_trailing(
    db: Session, cache: ThreadCache, user_id: str, thread_id: str, message_id: str
) -> int:
    """Delete the reference message and everything created after it.

    Returns:
        Number of deleted messages, the reference included.
    """
    get_owned_thread_or_raise(db, user_id, thread_id)
    reference = _get_message_in_thread(db, thread_id, message_id)

    result = db.execute(
        delete(Message).where(
            Message.thread_id == thread_id,
            Message.created_at >= reference.created_at,
        )
    )
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    logger.info("message_and_trailing_deleted", thread_id=thread_id, count=result.rowcount)
    return result.rowcount


def get_last_assistant_model(db: Session, thread_id: str) -> str | None:
    """Model of the most recent assistant message that recorded one."""
    return db.scalar(
        select(Message.model)
        .where(
            Message.thread_id == thread_id,
            Message.role == MessageRole.assistant.value,
            Message.model.is_not(None),
        )
        .order_by(Message.created_at.desc())
        .limit(1)
    )


def retry_message_with_original_model(
    db: Session, cache: ThreadCache, user_id: str, thread_id: str, message_id: str
) -> RetryOut:
    """History and model needed to regenerate a message.

    The returned messages are those created strictly before the target.
    The model is the target's own, falling back to the thread's last
    assistant model.
    """
    get_owned_thread_or_raise(db, user_id, thread_id)
    target = _get_message_in_thread(db, thread_id, message_id)

    model = target.model or get_last_assistant_model(db, thread_id)
    history = _query_thread_messages(db, thread_id, before=target.created_at)

    return RetryOut(
        thread_id=thread_id,
        model=model,
        messages_up_to_retry=messages_out(db, history),
    )


# =============================================================================
# Titles
# =============================================================================


def clean_title(text: str) -> str:
    return text.strip().replace('"', "")[:MAX_TITLE_CHARS].strip()


async def generate_and_update_thread_title(
    db: Session,
    cache: ThreadCache,
    llm_router: LLMRouter,
    user_id: str,
    thread_id: str,
    user_query: str,
    keys: ApiKeys,
    *,
    platform_openai_key: str | None = None,
) -> str:
    """Generate a short title from the first user query and store it.

    Uses DEFAULT_CHAT_MODEL with the user's OpenAI key, or the platform key.

    Raises:
        ApiError(api_key_missing:models): When neither key is available.
        LLMError: When the provider call fails.
    """
    thread = get_owned_thread_or_raise(db, user_id, thread_id)

    title_keys = keys.with_key("openai", keys.openai or platform_openai_key)
    resolved = resolve_model(DEFAULT_CHAT_MODEL, title_keys)

    response = await llm_router.generate(
        resolved.call_provider,
        LLMRequest(
            model_name=resolved.call_model_id,
            messages=[
                Turn(role="user", content=TITLE_PROMPT_TEMPLATE.format(user_query=user_query))
            ],
            max_tokens=25,
            temperature=0.2,
            top_p=0.9,
        ),
        resolved.api_key,
        key_mode="byok" if keys.openai else "platform",
        call_context=LLMCallContext(operation=LLMOperation.TITLE, thread_id=thread_id),
    )

    title = clean_title(response.text) or DEFAULT_THREAD_TITLE
    thread.title = title
    thread.updated_at = _utcnow()
    db.flush()
    db.commit()

    cache.invalidate_thread(thread_id)
    cache.invalidate_user_threads(user_id)
    logger.info("thread_title_generated", thread_id=thread_id, title_chars=len(title))
    return title


# =============================================================================
# Attachment links
# =============================================================================


def create_attachment_and_link_to_message(
    db: Session,
    *,
    attachment_id: str,
    user_id: str,
    message_id: str,
    file_key: str,
    file_name: str,
    file_size: int,
    mime_type: str,
    attachment_type: str,
    attachment_url: str,
) -> AttachmentOut:
    """Insert an attachment row and link it to an existing message."""
    if db.get(Message, message_id) is None:
        raise ApiError("not_found:attachment", f"Message {message_id} does not exist")

    attachment = Attachment(
        id=attachment_id,
        user_id=user_id,
        file_key=file_key,
        file_name=file_name,
        file_size=file_size,
        mime_type=mime_type,
        attachment_type=attachment_type,
        attachment_url=attachment_url,
    )
    db.add(attachment)
    db.flush()
    db.add(MessageAttachment(message_id=message_id, attachment_id=attachment_id))
    db.flush()
    db.commit()

    return attachment_to_out(attachment)


def link_attachments_to_message(
    db: Session, message_id: str, attachment_ids: list[str], user_id: str
) -> int:
    """Link the user's uploaded attachments to a message.

    Unknown ids and attachments owned by someone else are skipped.
    """
    if not attachment_ids:
        return 0
    existing = set(
        db.scalars(
            select(Attachment.id).where(
                Attachment.id.in_(attachment_ids), Attachment.user_id == user_id
            )
        )
    )
    linked = set(
        db.scalars(
            select(MessageAttachment.attachment_id).where(
                MessageAttachment.message_id == message_id
            )
        )
    )
    added = 0
    for attachment_id in attachment_ids:
        if attachment_id in existing and attachment_id not in linked:
            db.add(MessageAttachment(message_id=message_id, attachment_id=attachment_id))
            linked.add(attachment_id)
            added += 1
    db.flush()
    db.commit()
    return added


def get_message_attachments(db: Session, message_id: str) -> list[AttachmentOut]:
    return _attachments_by_message(db, [message_id]).get(message_id, [])


def messages_payload(messages: list[MessageOut]) -> list[dict[str, Any]]:
    """JSON-ready message list for cache writes and stream events."""
    return [m.model_dump(mode="json") for m in messages]
