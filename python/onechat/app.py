"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware and routes; the launcher
adds the request-id middleware last.

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- Every response, auth failures included, carries X-Request-ID

Shared clients (created in the lifespan, stored on app.state):
- httpx_client: one AsyncClient for providers, key validation, tools and voice
- llm_router: LLMRouter over the shared client with provider feature flags
- redis_client: sync redis, or None when REDIS_URL is unset or unreachable
- pubsub_client: redis.asyncio client for stream abort subscriptions
- storage: blob storage client
- rate_limiter: chat and voice sliding-window limits
"""

from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from redis import asyncio as aioredis
from starlette.exceptions import HTTPException as StarletteHTTPException

from onechat.api.routes import create_api_router
from onechat.auth.middleware import AuthMiddleware
from onechat.auth.verifier import JwksVerifier, TokenVerifier
from onechat.config import get_settings
from onechat.errors import ApiError
from onechat.logging import configure_logging, get_logger
from onechat.middleware.request_id import RequestIDMiddleware
from onechat.responses import (
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from onechat.services.llm import LLMRouter
from onechat.services.rate_limit import RateLimiter
from onechat.storage import get_storage_client

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_token_verifier() -> JwksVerifier:
    """Token verifier configured from AUTH_JWKS_URL, AUTH_ISSUER and AUTH_AUDIENCES."""
    settings = get_settings()
    return JwksVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


def create_redis_clients(redis_url: str | None) -> tuple[redis.Redis | None, aioredis.Redis | None]:
    """Connect the sync and asyncio redis clients.

    Returns (None, None) when no URL is configured or the server is unreachable;
    redis-backed features then degrade as documented per feature.
    """
    if not redis_url:
        return None, None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None, None

    pubsub_client = aioredis.Redis.from_url(redis_url, decode_responses=True)
    logger.info("redis_client_initialized")
    return client, pubsub_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.llm_router = LLMRouter(
        app.state.httpx_client,
        enable_openai=settings.enable_openai,
        enable_anthropic=settings.enable_anthropic,
        enable_google=settings.enable_google,
        enable_openrouter=settings.enable_openrouter,
        app_url=settings.app_url,
        app_title=settings.app_title,
    )
    logger.info(
        "llm_router_initialized",
        enable_openai=settings.enable_openai,
        enable_anthropic=settings.enable_anthropic,
        enable_google=settings.enable_google,
        enable_openrouter=settings.enable_openrouter,
    )

    redis_client, pubsub_client = create_redis_clients(settings.redis_url)
    app.state.redis_client = redis_client
    app.state.pubsub_client = pubsub_client
    app.state.storage = get_storage_client()
    app.state.rate_limiter = RateLimiter(
        redis_client=redis_client,
        rpm_limit=settings.rate_limit_rpm,
        voice_limit_per_hour=settings.voice_limit_per_hour,
    )

    yield

    await app.state.httpx_client.aclose()
    if pubsub_client is not None:
        await pubsub_client.aclose()
    if redis_client is not None:
        try:
            redis_client.close()
        except redis.RedisError as e:
            logger.warning("redis_client_close_failed", error=str(e))
    logger.info("app_shutdown_complete")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="OneChat API",
        description="Backend API for OneChat - one chat interface over many model providers",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(),
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.onechat_internal_secret,
        )
        logger.info(
            "auth_middleware_enabled",
            env=settings.onechat_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call this AFTER all other middleware is added, so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
