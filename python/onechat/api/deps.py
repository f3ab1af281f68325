"""FastAPI dependencies for route handlers.

Shared clients (httpx, LLM router, redis, storage) live on app.state and are
created in the app lifespan. Per-request helpers (cookie adapter, key store,
thread cache) are built here.
"""

from typing import Annotated

import httpx
import redis
from fastapi import BackgroundTasks, Depends, Request
from redis import asyncio as aioredis

from onechat.auth.middleware import Viewer, get_optional_viewer, get_viewer
from onechat.config import get_settings
from onechat.db.session import get_db, get_session_factory
from onechat.services.chat import ChatDeps
from onechat.services.deferred import BackgroundTaskScheduler
from onechat.services.key_store import ApiKeyStore
from onechat.services.llm import LLMRouter
from onechat.services.persistence import CookiePersistence, PersistenceAdapter, RedisPersistence
from onechat.services.rate_limit import RateLimiter
from onechat.services.thread_cache import ThreadCache
from onechat.storage import StorageClientBase

__all__ = [
    "get_db",
    "get_session_factory",
    "get_viewer",
    "get_optional_viewer",
    "get_llm_router",
    "get_http_client",
    "get_redis",
    "get_storage",
    "get_rate_limiter",
    "get_thread_cache",
    "get_cookies",
    "get_key_store",
    "get_chat_deps",
]

KEY_STORE_NAMESPACE = "api-keys"


def get_llm_router(request: Request) -> LLMRouter:
    return request.app.state.llm_router


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.httpx_client


def get_redis(request: Request) -> redis.Redis | None:
    """The sync redis client, or None when REDIS_URL is unset or unreachable."""
    return getattr(request.app.state, "redis_client", None)


def get_pubsub_redis(request: Request) -> aioredis.Redis | None:
    return getattr(request.app.state, "pubsub_client", None)


def get_storage(request: Request) -> StorageClientBase:
    return request.app.state.storage


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_thread_cache(
    background_tasks: BackgroundTasks,
    redis_client: Annotated[redis.Redis | None, Depends(get_redis)],
) -> ThreadCache:
    """Thread cache whose writes run after the response is sent."""
    return ThreadCache(redis_client, BackgroundTaskScheduler(background_tasks))


def get_cookies(request: Request) -> CookiePersistence:
    """Cookie adapter for this request. Routes apply it to their response."""
    return CookiePersistence(dict(request.cookies), secure=get_settings().cookie_secure)


def get_key_store(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
    redis_client: Annotated[redis.Redis | None, Depends(get_redis)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> ApiKeyStore:
    """The viewer's credential store.

    Keys live in redis when available; otherwise they ride in the
    (XOR-obfuscated) cookie alongside the preference cookies.
    """
    settings = get_settings()
    storage: PersistenceAdapter = (
        RedisPersistence(redis_client, KEY_STORE_NAMESPACE) if redis_client else cookies
    )
    return ApiKeyStore(
        viewer.user_id,
        storage,
        cookies,
        client,
        app_url=settings.app_url,
        app_title=settings.app_title,
    )


def get_chat_deps(request: Request) -> ChatDeps:
    """Collaborators for a chat stream, which outlives the request session."""
    settings = get_settings()
    state = request.app.state
    return ChatDeps(
        db_factory=get_session_factory(),
        llm_router=state.llm_router,
        http_client=state.httpx_client,
        redis_client=getattr(state, "redis_client", None),
        pubsub_client=getattr(state, "pubsub_client", None),
        storage=getattr(state, "storage", None),
        platform_openai_key=settings.openai_api_key,
        firecrawl_api_key=settings.firecrawl_api_key,
        timeout_s=settings.llm_timeout_s,
    )
