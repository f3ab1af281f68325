"""Stale assistant message sweeper task.

Celery beat job that finalizes assistant messages a dead stream left behind:
- role='assistant' AND status IN ('pending', 'streaming') AND created_at < now()-5min
- If stream_active:{message_id} exists in Redis the stream is still running: skip
- Finalize via conditional update to status='error' with an error_message
- Invalidate the thread caches of every finalized message
"""

from datetime import UTC, datetime, timedelta

import redis
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from onechat.celery import celery_app
from onechat.config import get_settings
from onechat.db.models import Message, MessageRole, MessageStatus, Thread
from onechat.db.session import session_scope
from onechat.logging import clear_task_context, configure_task_logging, get_logger
from onechat.services.streams import is_stream_active
from onechat.services.thread_cache import ThreadCache

logger = get_logger(__name__)

STALE_THRESHOLD_MINUTES = 5
ORPHANED_MESSAGE = "Request timed out. Please try again."

_ACTIVE = (MessageStatus.pending.value, MessageStatus.streaming.value)


def sweep_stale_messages_once(
    db: Session, redis_client: redis.Redis | None, now: datetime | None = None
) -> int:
    """Finalize stale assistant messages.

    Args:
        db: Database session; committed on success.
        redis_client: Redis client for liveness checks and cache invalidation.
            Without one every stale message is treated as orphaned.
        now: Clock override.

    Returns:
        Number of messages finalized.
    """
    now = now or datetime.now(UTC)
    threshold = now - timedelta(minutes=STALE_THRESHOLD_MINUTES)

    rows = db.execute(
        select(Message.id, Message.thread_id, Message.created_at, Thread.user_id)
        .join(Thread, Thread.id == Message.thread_id)
        .where(
            Message.role == MessageRole.assistant.value,
            Message.status.in_(_ACTIVE),
            Message.created_at < threshold,
        )
        .order_by(Message.created_at.asc())
    ).all()

    if not rows:
        return 0

    finalized: list[tuple[str, str]] = []
    oldest_age_seconds = 0

    for message_id, thread_id, created_at, user_id in rows:
        age_seconds = int((now - created_at).total_seconds())
        oldest_age_seconds = max(oldest_age_seconds, age_seconds)

        if is_stream_active(redis_client, message_id):
            logger.debug("sweeper_skip_active", message_id=message_id, age_seconds=age_seconds)
            continue

        # Conditional update: the stream may have finished since the select
        result = db.execute(
            update(Message)
            .where(Message.id == message_id, Message.status.in_(_ACTIVE))
            .values(
                status=MessageStatus.error.value,
                is_errored=True,
                error_message=ORPHANED_MESSAGE,
                updated_at=now,
            )
        )
        if result.rowcount == 1:
            finalized.append((thread_id, user_id))
            logger.info("sweeper_finalized", message_id=message_id, age_seconds=age_seconds)

    db.commit()

    cache = ThreadCache(redis_client)
    for thread_id, user_id in set(finalized):
        cache.invalidate_thread(thread_id)
        cache.invalidate_user_threads(user_id)

    if finalized:
        logger.info(
            "sweeper_complete",
            finalized_count=len(finalized),
            total_stale=len(rows),
            oldest_age_seconds=oldest_age_seconds,
        )
    return len(finalized)


def redis_from_settings() -> redis.Redis | None:
    redis_url = get_settings().redis_url
    if not redis_url:
        return None
    return redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)


@celery_app.task(bind=True, max_retries=0, name="sweep_stale_messages")
def sweep_stale_messages(self, request_id: str | None = None) -> dict:
    """Beat entry point for the sweeper.

    Returns:
        Dict with the finalized count.
    """
    configure_task_logging(
        request_id=request_id, task_name="sweep_stale_messages", task_id=self.request.id
    )

    redis_client = redis_from_settings()

    try:
        with session_scope() as db:
            finalized_count = sweep_stale_messages_once(db, redis_client)
        return {"status": "success", "finalized_count": finalized_count}
    except Exception as e:
        logger.error("sweeper_error", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        if redis_client is not None:
            redis_client.close()
        clear_task_context()
