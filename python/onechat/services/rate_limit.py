"""Rate limiting service using Redis.

Sliding-window limits over a sorted set of request timestamps:

- Chat requests per minute per user: RATE_LIMIT_RPM (rate_limit:chat)
- Voice sessions on the platform key per hour: VOICE_LIMIT_PER_HOUR (rate_limit:api)

Redis keys:
- rate:{name}:{identifier} - one member per request, scored by its timestamp

Fail modes:
- Redis unavailable or erroring: fail open (the request is allowed)
"""

import math
import time
from dataclasses import dataclass
from uuid import uuid4

import redis

from onechat.errors import ApiError
from onechat.logging import get_logger
from onechat.services.redact import safe_kv

logger = get_logger(__name__)

RPM_WINDOW_SECONDS = 60
VOICE_WINDOW_SECONDS = 60 * 60


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the oldest counted request leaves the window

    def wait_minutes(self, now: float | None = None) -> int:
        return max(0, math.ceil((self.reset_at - (now or time.time())) / 60))


class SlidingWindowLimiter:
    """A named sliding-window limit.

    Args:
        redis_client: Sync redis client. If None, limits are not enforced.
        name: Key namespace for this limit.
        limit: Requests allowed per window.
        window_s: Window length in seconds.
    """

    def __init__(self, redis_client: redis.Redis | None, name: str, limit: int, window_s: int):
        self._redis = redis_client
        self.name = name
        self.limit = limit
        self.window_s = window_s

    def _key(self, identifier: str) -> str:
        return f"rate:{self.name}:{identifier}"

    def hit(self, identifier: str, *, now: float | None = None) -> RateLimitResult:
        """Record a request and report whether it fits in the window.

        Rejected requests are not counted.
        """
        now = now if now is not None else time.time()
        allowed = RateLimitResult(True, self.limit, self.limit, now + self.window_s)
        if self._redis is None:
            return allowed

        key = self._key(identifier)
        window_start = now - self.window_s
        try:
            pipe = self._redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = pipe.execute()

            oldest_ts = oldest[0][1] if oldest else now
            reset_at = oldest_ts + self.window_s

            if count >= self.limit:
                logger.warning(
                    "rate_limit.blocked",
                    **safe_kv(limit_type=self.name, limit=self.limit),
                )
                return RateLimitResult(False, self.limit, 0, reset_at)

            pipe = self._redis.pipeline()
            pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
            pipe.expire(key, self.window_s * 2)
            pipe.execute()
            return RateLimitResult(True, self.limit, self.limit - count - 1, reset_at)
        except redis.RedisError as e:
            logger.warning("rate_limit_check_failed", check=self.name, error=str(e))
            return allowed


class RateLimiter:
    """Per-user limits used by the API.

    Args:
        redis_client: Redis client instance (sync). If None, limits are not enforced.
        rpm_limit: Chat requests per minute per user.
        voice_limit_per_hour: Platform-key voice sessions per hour per user.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        rpm_limit: int = 20,
        voice_limit_per_hour: int = 5,
    ):
        self.chat = SlidingWindowLimiter(redis_client, "rpm", rpm_limit, RPM_WINDOW_SECONDS)
        self.voice = SlidingWindowLimiter(
            redis_client, "voice_transcription", voice_limit_per_hour, VOICE_WINDOW_SECONDS
        )

    def check_chat_limit(self, user_id: str) -> None:
        """Raises:
        ApiError(rate_limit:chat): If the per-minute limit is exceeded.
        """
        result = self.chat.hit(user_id)
        if not result.success:
            raise ApiError(
                "rate_limit:chat",
                f"Rate limit exceeded: {result.limit} requests per minute",
            )

    def check_voice_limit(self, user_id: str) -> None:
        """Raises:
        ApiError(rate_limit:api): If the hourly voice limit is exceeded.
        """
        result = self.voice.hit(f"voice_{user_id}")
        if not result.success:
            raise ApiError(
                "rate_limit:api",
                f"Voice limit reached ({result.limit}/hour). "
                f"Try again in {result.wait_minutes()}m or add your API key.",
            )
