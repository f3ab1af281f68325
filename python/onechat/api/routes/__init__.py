"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from onechat.api.routes.attachments import router as attachments_router
from onechat.api.routes.chat import router as chat_router
from onechat.api.routes.health import router as health_router
from onechat.api.routes.keys import router as keys_router
from onechat.api.routes.models import router as models_router
from onechat.api.routes.preferences import router as preferences_router
from onechat.api.routes.shares import router as shares_router
from onechat.api.routes.threads import router as threads_router
from onechat.api.routes.voice import router as voice_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(models_router)
    api_router.include_router(keys_router)
    api_router.include_router(threads_router)
    api_router.include_router(chat_router)
    api_router.include_router(shares_router)
    api_router.include_router(preferences_router)
    api_router.include_router(voice_router)
    api_router.include_router(attachments_router)
    return api_router


__all__ = ["create_api_router"]
