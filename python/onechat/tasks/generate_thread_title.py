"""Celery task for thread title generation.

Runs the title service off the request path. Only the platform OpenAI key
is used here: user keys never travel through the broker.

- Task is idempotent: a rerun overwrites the title with a fresh one
- max_retries=0 (the client can request a title again)
"""

import asyncio

import httpx

from onechat.celery import celery_app
from onechat.config import get_settings
from onechat.db.session import session_scope
from onechat.errors import ApiError
from onechat.logging import clear_task_context, configure_task_logging, get_logger
from onechat.services.api_keys import ApiKeys
from onechat.services.llm import LLMError, LLMRouter
from onechat.services.thread_cache import ThreadCache
from onechat.services.threads import generate_and_update_thread_title
from onechat.tasks.sweep_stale_messages import redis_from_settings

logger = get_logger(__name__)


async def _generate(db, cache: ThreadCache, thread_id: str, user_id: str, user_query: str) -> str:
    settings = get_settings()
    async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0)) as client:
        router = LLMRouter(
            client,
            enable_openai=settings.enable_openai,
            enable_anthropic=settings.enable_anthropic,
            enable_google=settings.enable_google,
            enable_openrouter=settings.enable_openrouter,
            app_url=settings.app_url,
            app_title=settings.app_title,
        )
        return await generate_and_update_thread_title(
            db,
            cache,
            router,
            user_id,
            thread_id,
            user_query,
            ApiKeys(),
            platform_openai_key=settings.openai_api_key,
        )


@celery_app.task(bind=True, max_retries=0, name="generate_thread_title")
def generate_thread_title(
    self,
    thread_id: str,
    user_id: str,
    user_query: str,
    request_id: str | None = None,
) -> dict:
    """Generate and store a thread title.

    Args:
        thread_id: Thread to title.
        user_id: Owner of the thread.
        user_query: First user query of the thread.
        request_id: Optional request ID for log correlation.

    Returns:
        Dict with result status and the title when one was stored.
    """
    configure_task_logging(
        request_id=request_id, task_name="generate_thread_title", task_id=self.request.id
    )
    logger.info("generate_thread_title_started", thread_id=thread_id)

    redis_client = redis_from_settings()

    try:
        with session_scope() as db:
            title = asyncio.run(
                _generate(db, ThreadCache(redis_client), thread_id, user_id, user_query)
            )
        return {"status": "success", "title": title}
    except (ApiError, LLMError) as e:
        logger.warning("generate_thread_title_failed", thread_id=thread_id, error=str(e))
        return {"status": "failed", "error": str(e)}
    finally:
        if redis_client is not None:
            redis_client.close()
        clear_task_context()
