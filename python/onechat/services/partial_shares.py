"""Partial shares: token-addressed, read-only views of a thread prefix.

A partial share names a thread and a cutoff message. Resolving its token
returns the thread's messages created at or before the cutoff, relabelled
as a public thread whose id is the token.

Redis layout (both keys expire after 7 days):
    partial_share:{token}        JSON record
    user_partial_shares:{uid}    SET of the user's tokens
"""

import json
import secrets
from datetime import UTC, datetime, timedelta

import redis
from sqlalchemy.orm import Session

from onechat.db.models import Message, ThreadVisibility
from onechat.errors import ApiError, ForbiddenError, NotFoundError, Surface
from onechat.logging import get_logger
from onechat.schemas.thread import PartialShareOut, PartialThreadOut
from onechat.services.thread_cache import ThreadCache
from onechat.services.threads import get_thread_with_messages

logger = get_logger(__name__)

PARTIAL_SHARE_TTL_S = 7 * 24 * 60 * 60
PARTIAL_SHARE_KEY_PREFIX = "partial_share:"
USER_PARTIAL_SHARES_KEY_PREFIX = "user_partial_shares:"
TOKEN_LENGTH = 12
PARTIAL_TITLE_SUFFIX = " (Partial)"


def partial_share_key(token: str) -> str:
    return f"{PARTIAL_SHARE_KEY_PREFIX}{token}"


def user_partial_shares_key(user_id: str) -> str:
    return f"{USER_PARTIAL_SHARES_KEY_PREFIX}{user_id}"


def new_share_token() -> str:
    """12 URL-safe characters."""
    return secrets.token_urlsafe(9)[:TOKEN_LENGTH]


def _require_redis(redis_client: redis.Redis | None) -> redis.Redis:
    if redis_client is None:
        raise ApiError("internal_server_error:api", "Sharing requires redis")
    return redis_client


def create_partial_share(
    db: Session,
    cache: ThreadCache,
    redis_client: redis.Redis | None,
    user_id: str,
    thread_id: str,
    message_id: str,
) -> PartialShareOut:
    """Create a share token for a thread up to a message.

    Raises:
        NotFoundError: Thread missing or not owned, or the message is not in it.
    """
    client = _require_redis(redis_client)

    data = get_thread_with_messages(db, cache, thread_id)
    if data is None or data.thread.user_id != user_id:
        raise NotFoundError(Surface.THREAD, "Thread not found or access denied")

    message = db.get(Message, message_id)
    if message is None or message.thread_id != thread_id:
        raise NotFoundError(Surface.THREAD, "Message not found in this thread")

    now = datetime.now(UTC)
    share = PartialShareOut(
        token=new_share_token(),
        thread_id=thread_id,
        message_id=message_id,
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(seconds=PARTIAL_SHARE_TTL_S),
    )

    client.setex(partial_share_key(share.token), PARTIAL_SHARE_TTL_S, share.model_dump_json())
    user_key = user_partial_shares_key(user_id)
    client.sadd(user_key, share.token)
    client.expire(user_key, PARTIAL_SHARE_TTL_S)

    logger.info("partial_share_created", thread_id=thread_id, message_id=message_id)
    return share


def get_partial_share(
    redis_client: redis.Redis | None, token: str, *, now: datetime | None = None
) -> PartialShareOut | None:
    """The share record, or None when missing or expired.

    Expired records are deleted on read. Read failures are logged and
    reported as missing.
    """
    if redis_client is None:
        return None
    key = partial_share_key(token)
    try:
        raw = redis_client.get(key)
        if raw is None:
            return None
        share = PartialShareOut.model_validate(json.loads(raw))
        if share.expires_at < (now or datetime.now(UTC)):
            redis_client.delete(key)
            return None
        return share
    except (redis.RedisError, ValueError) as e:
        logger.warning("partial_share_read_failed", error=str(e))
        return None


def delete_partial_share(redis_client: redis.Redis | None, user_id: str, token: str) -> bool:
    """Delete a share. Returns True when a record was removed.

    Raises:
        ForbiddenError: The share belongs to another user.
    """
    client = _require_redis(redis_client)

    share = get_partial_share(client, token)
    if share is not None and share.user_id != user_id:
        raise ForbiddenError(Surface.THREAD, "Access denied")

    pipe = client.pipeline()
    pipe.delete(partial_share_key(token))
    pipe.srem(user_partial_shares_key(user_id), token)
    deleted, _ = pipe.execute()
    return deleted == 1


def list_user_partial_shares(
    redis_client: redis.Redis | None, user_id: str
) -> list[PartialShareOut]:
    """The user's live shares, newest first. Tokens whose record is gone are pruned."""
    client = _require_redis(redis_client)

    user_key = user_partial_shares_key(user_id)
    shares: list[PartialShareOut] = []
    stale: list[str] = []
    for token in client.smembers(user_key):
        share = get_partial_share(client, token)
        if share is None:
            stale.append(token)
        else:
            shares.append(share)

    if stale:
        client.srem(user_key, *stale)

    return sorted(shares, key=lambda s: s.created_at, reverse=True)


def get_partial_thread_data(
    db: Session, cache: ThreadCache, redis_client: redis.Redis | None, token: str
) -> PartialThreadOut | None:
    """The shared thread prefix, or None when the token or its targets are gone."""
    share = get_partial_share(redis_client, token)
    if share is None:
        return None

    data = get_thread_with_messages(db, cache, share.thread_id)
    if data is None:
        return None

    target = db.get(Message, share.message_id)
    if target is None:
        return None

    cutoff = target.created_at
    return PartialThreadOut(
        thread=data.thread.model_copy(
            update={
                "id": share.token,
                "title": f"{data.thread.title}{PARTIAL_TITLE_SUFFIX}",
                "visibility": ThreadVisibility.public.value,
            }
        ),
        messages=[m for m in data.messages if m.created_at <= cutoff],
        original_thread_id=share.thread_id,
        cutoff_message_id=share.message_id,
    )
