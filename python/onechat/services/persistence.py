"""Pluggable persistence for per-user state containers.

State containers (credential store, pinned threads, user settings, model
preferences) never talk to a storage mechanism directly. They receive a
PersistenceAdapter with a get/set/remove interface:

- MemoryPersistence: dict-backed, used by tests and one-off computations
- RedisPersistence: server-side session storage under a key namespace
- CookiePersistence: reads request cookies, queues Set-Cookie operations
  that are applied to the outgoing response
"""

from dataclasses import dataclass
from typing import Protocol

from fastapi import Response
from redis import Redis
from redis.exceptions import RedisError

from onechat.logging import get_logger

logger = get_logger(__name__)

COOKIE_MAX_AGE_S = 30 * 24 * 60 * 60  # 30 days


class PersistenceAdapter(Protocol):
    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str) -> None: ...

    def remove(self, name: str) -> None: ...


class MemoryPersistence:
    """In-memory adapter."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def set(self, name: str, value: str) -> None:
        self.values[name] = value

    def remove(self, name: str) -> None:
        self.values.pop(name, None)


class RedisPersistence:
    """Server-session adapter backed by redis string keys.

    Keys are stored as ``{namespace}:{name}``. Redis failures are logged and
    reads degrade to "absent"; writes are dropped.
    """

    def __init__(self, client: Redis, namespace: str, ttl_s: int = COOKIE_MAX_AGE_S):
        self._client = client
        self._namespace = namespace
        self._ttl_s = ttl_s

    def _key(self, name: str) -> str:
        return f"{self._namespace}:{name}"

    def get(self, name: str) -> str | None:
        try:
            return self._client.get(self._key(name))
        except RedisError as e:
            logger.warning("persistence.redis_get_failed", name=name, error=str(e))
            return None

    def set(self, name: str, value: str) -> None:
        try:
            self._client.set(self._key(name), value, ex=self._ttl_s)
        except RedisError as e:
            logger.warning("persistence.redis_set_failed", name=name, error=str(e))

    def remove(self, name: str) -> None:
        try:
            self._client.delete(self._key(name))
        except RedisError as e:
            logger.warning("persistence.redis_remove_failed", name=name, error=str(e))


@dataclass
class _CookieWrite:
    name: str
    value: str | None  # None means delete


class CookiePersistence:
    """Cookie adapter for one request/response cycle.

    Reads see the request cookies overlaid with any writes made during the
    request. Writes are recorded and flushed onto a response by ``apply``.
    """

    def __init__(
        self,
        cookies: dict[str, str],
        *,
        secure: bool = False,
        max_age_s: int = COOKIE_MAX_AGE_S,
    ):
        self._cookies = dict(cookies)
        self._secure = secure
        self._max_age_s = max_age_s
        self._writes: list[_CookieWrite] = []

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    def set(self, name: str, value: str) -> None:
        self._cookies[name] = value
        self._writes.append(_CookieWrite(name, value))

    def remove(self, name: str) -> None:
        self._cookies.pop(name, None)
        self._writes.append(_CookieWrite(name, None))

    @property
    def pending_writes(self) -> list[tuple[str, str | None]]:
        return [(w.name, w.value) for w in self._writes]

    def apply(self, response: Response) -> None:
        """Write queued cookie operations onto the response."""
        for write in self._writes:
            if write.value is None:
                response.delete_cookie(write.name, path="/")
            else:
                response.set_cookie(
                    write.name,
                    write.value,
                    max_age=self._max_age_s,
                    path="/",
                    samesite="lax",
                    secure=self._secure,
                )
        self._writes.clear()
