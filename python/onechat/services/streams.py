"""Stream registry and cancellation.

Every chat request gets a stream id, pushed onto a per-chat redis list so the
newest stream is always at the head:

    chat:{chat_id}:streams    LIST, expires 24 h after the last push
    stream:{stream_id}:chat   STRING, the owning chat id, same expiry

Cancellation is a pub/sub handshake. stop_stream publishes "abort" on
``stop-stream:{stream_id}``; the process producing that stream subscribes to
the channel through watch_for_abort and sets an AbortSignal when the message
arrives. Delivery is not acknowledged: a stop can race the natural end of a
stream, and a publish with no subscriber is silently dropped.
"""

import asyncio

import redis
import redis.asyncio as aioredis

from onechat.logging import get_logger

logger = get_logger(__name__)

STREAM_LIST_TTL_S = 86400
ABORT_MESSAGE = "abort"
LIVENESS_TTL_S = 600


def chat_streams_key(chat_id: str) -> str:
    return f"chat:{chat_id}:streams"


def stream_chat_key(stream_id: str) -> str:
    return f"stream:{stream_id}:chat"


def stop_channel(stream_id: str) -> str:
    return f"stop-stream:{stream_id}"


# =============================================================================
# Registry
# =============================================================================


def append_stream_id(redis_client: redis.Redis | None, chat_id: str, stream_id: str) -> None:
    """Record a new stream for a chat. A no-op without redis."""
    if redis_client is None:
        return
    key = chat_streams_key(chat_id)
    try:
        redis_client.lpush(key, stream_id)
        redis_client.expire(key, STREAM_LIST_TTL_S)
        redis_client.set(stream_chat_key(stream_id), chat_id, ex=STREAM_LIST_TTL_S)
    except redis.RedisError as e:
        logger.warning("stream_register_failed", chat_id=chat_id, error=str(e))


def load_streams(redis_client: redis.Redis | None, chat_id: str) -> list[str]:
    """Stream ids for a chat, most recent first."""
    if redis_client is None:
        return []
    try:
        return list(redis_client.lrange(chat_streams_key(chat_id), 0, -1))
    except redis.RedisError as e:
        logger.warning("stream_list_failed", chat_id=chat_id, error=str(e))
        return []


def find_stream_chat_id(redis_client: redis.Redis | None, stream_id: str) -> str | None:
    """The chat a stream was registered on, or None once it is gone from that chat's list."""
    if redis_client is None:
        return None
    try:
        chat_id = redis_client.get(stream_chat_key(stream_id))
    except redis.RedisError as e:
        logger.warning("stream_lookup_failed", stream_id=stream_id, error=str(e))
        return None
    if chat_id is None or stream_id not in load_streams(redis_client, chat_id):
        return None
    return chat_id


def get_latest_stream_id(redis_client: redis.Redis | None, chat_id: str) -> str | None:
    streams = load_streams(redis_client, chat_id)
    return streams[0] if streams else None


def clear_chat_streams(redis_client: redis.Redis | None, chat_id: str) -> None:
    if redis_client is None:
        return
    try:
        redis_client.delete(chat_streams_key(chat_id))
    except redis.RedisError as e:
        logger.warning("stream_clear_failed", chat_id=chat_id, error=str(e))


# =============================================================================
# Liveness
# =============================================================================


def stream_active_key(message_id: str) -> str:
    return f"stream_active:{message_id}"


def mark_stream_active(redis_client: redis.Redis | None, message_id: str) -> None:
    """Set or refresh the liveness marker of a generating assistant message."""
    if redis_client is None:
        return
    try:
        redis_client.setex(stream_active_key(message_id), LIVENESS_TTL_S, "1")
    except redis.RedisError as e:
        logger.debug("stream_liveness_set_failed", message_id=message_id, error=str(e))


def clear_stream_active(redis_client: redis.Redis | None, message_id: str) -> None:
    if redis_client is None:
        return
    try:
        redis_client.delete(stream_active_key(message_id))
    except redis.RedisError as e:
        logger.warning("stream_liveness_clear_failed", message_id=message_id, error=str(e))


def is_stream_active(redis_client: redis.Redis | None, message_id: str) -> bool:
    """False without redis, so a sweeper with no redis treats every stream as gone."""
    if redis_client is None:
        return False
    try:
        return bool(redis_client.exists(stream_active_key(message_id)))
    except redis.RedisError as e:
        logger.warning("stream_liveness_check_failed", message_id=message_id, error=str(e))
        return False


# =============================================================================
# Cancellation
# =============================================================================


def stop_stream(redis_client: redis.Redis | None, stream_id: str) -> bool:
    """Publish an abort for a stream.

    Returns:
        True when the publish went through (whether or not anyone was
        listening), False when redis is missing or the publish failed.
    """
    if redis_client is None:
        logger.warning("stream_stop_unavailable", stream_id=stream_id)
        return False
    try:
        receivers = redis_client.publish(stop_channel(stream_id), ABORT_MESSAGE)
    except redis.RedisError as e:
        logger.error("stream_stop_failed", stream_id=stream_id, error=str(e))
        return False
    logger.info("stream_stop_published", stream_id=stream_id, receivers=receivers)
    return True


class AbortSignal:
    """Set once when the stream should stop producing output."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "stopped") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def watch_for_abort(
    pubsub_client: aioredis.Redis, stream_id: str, signal: AbortSignal
) -> None:
    """Subscribe to a stream's stop channel until an abort arrives.

    Runs until the abort message is received or the task is cancelled.
    The subscription is torn down on every exit path.
    """
    channel = stop_channel(stream_id)
    pubsub = pubsub_client.pubsub()
    try:
        await pubsub.subscribe(channel)
        logger.debug("stream_abort_subscribed", stream_id=stream_id)
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode()
            if message.get("channel") in (channel, channel.encode()) and data == ABORT_MESSAGE:
                logger.info("stream_abort_received", stream_id=stream_id)
                signal.abort()
                return
    except redis.RedisError as e:
        logger.error("stream_abort_subscribe_failed", stream_id=stream_id, error=str(e))
    finally:
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except redis.RedisError as e:
            logger.debug("stream_abort_cleanup_failed", stream_id=stream_id, error=str(e))


def start_abort_watch(
    pubsub_client: aioredis.Redis | None, stream_id: str, signal: AbortSignal
) -> asyncio.Task | None:
    """Run watch_for_abort in the background. Cancel the task to clean up."""
    if pubsub_client is None:
        return None
    return asyncio.create_task(watch_for_abort(pubsub_client, stream_id, signal))
