"""Thread cache backed by redis.

Keys:
    thread:{thread_id}:withMessages   30 s (120 s when primed after a branch)
    user:{user_id}:threads            300 s

Reads hit redis immediately. Writes and deletes go through the effect
scheduler and land after the response. prime_thread writes synchronously so
the first read of a freshly branched thread never misses.

Redis failures are logged and swallowed: the database is the source of
truth and every read falls back to it.
"""

import json
from typing import Any

import redis

from onechat.logging import get_logger
from onechat.services.deferred import EffectScheduler, ImmediateScheduler

logger = get_logger(__name__)

THREAD_CACHE_TTL_S = 30
PRIMED_THREAD_CACHE_TTL_S = 120
THREAD_LIST_CACHE_TTL_S = 300


def thread_cache_key(thread_id: str) -> str:
    return f"thread:{thread_id}:withMessages"


def user_threads_cache_key(user_id: str) -> str:
    return f"user:{user_id}:threads"


class ThreadCache:
    """Read-through / write-behind cache for thread reads.

    Args:
        redis_client: Sync redis client with decode_responses=True, or None
            to disable caching.
        scheduler: Where deferred writes go. Defaults to running inline.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None,
        scheduler: EffectScheduler | None = None,
    ):
        self._redis = redis_client
        self._scheduler = scheduler or ImmediateScheduler()

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def _get_json(self, key: str) -> Any | None:
        if self._redis is None:
            return None
        try:
            raw = self._redis.get(key)
        except redis.RedisError as e:
            logger.warning("thread_cache.read_failed", key=key, error=str(e))
            return None
        if raw is None:
            logger.debug("thread_cache.miss", key=key)
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("thread_cache.corrupt", key=key)
            return None

    def _setex(self, key: str, ttl_s: int, value: Any) -> None:
        if self._redis is None:
            return
        try:
            self._redis.setex(key, ttl_s, json.dumps(value))
        except redis.RedisError as e:
            logger.warning("thread_cache.write_failed", key=key, error=str(e))

    def _delete(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            self._redis.delete(key)
        except redis.RedisError as e:
            logger.warning("thread_cache.delete_failed", key=key, error=str(e))

    # -------------------------------------------------------------------------
    # thread:{id}:withMessages
    # -------------------------------------------------------------------------

    def get_thread(self, thread_id: str) -> dict[str, Any] | None:
        return self._get_json(thread_cache_key(thread_id))

    def set_thread(
        self, thread_id: str, data: dict[str, Any], ttl_s: int = THREAD_CACHE_TTL_S
    ) -> None:
        if self._redis is None:
            return
        self._scheduler.schedule_after_response(
            self._setex, thread_cache_key(thread_id), ttl_s, data
        )

    def prime_thread(
        self, thread_id: str, data: dict[str, Any], ttl_s: int = PRIMED_THREAD_CACHE_TTL_S
    ) -> None:
        """Write synchronously, bypassing the scheduler."""
        self._setex(thread_cache_key(thread_id), ttl_s, data)

    def invalidate_thread(self, thread_id: str) -> None:
        if self._redis is None:
            return
        self._scheduler.schedule_after_response(self._delete, thread_cache_key(thread_id))

    # -------------------------------------------------------------------------
    # user:{id}:threads
    # -------------------------------------------------------------------------

    def get_user_threads(self, user_id: str) -> list[dict[str, Any]] | None:
        return self._get_json(user_threads_cache_key(user_id))

    def set_user_threads(self, user_id: str, items: list[dict[str, Any]]) -> None:
        if self._redis is None:
            return
        self._scheduler.schedule_after_response(
            self._setex, user_threads_cache_key(user_id), THREAD_LIST_CACHE_TTL_S, items
        )

    def invalidate_user_threads(self, user_id: str) -> None:
        if self._redis is None:
            return
        self._scheduler.schedule_after_response(self._delete, user_threads_cache_key(user_id))
