"""Chat streaming routes.

- POST /chat: Persist the user message and stream the assistant turn (SSE)
- GET /chat/{id}/stream: Catch a reconnecting client up with the thread
- POST /chat/{id}/stop: Stop the thread's latest stream and settle its message
- POST /chat/streams/{stream_id}/stop: Publish an abort for one stream

SSE framing: ``event: <name>\\ndata: <json>\\n\\n`` with ``: keepalive``
comments while the provider is silent. Errors after the stream has started
arrive as an ``error`` event; errors before it are regular JSON envelopes.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from onechat.api.deps import (
    get_chat_deps,
    get_db,
    get_key_store,
    get_rate_limiter,
    get_redis,
    get_thread_cache,
    get_viewer,
)
from onechat.auth.middleware import Viewer
from onechat.errors import Surface
from onechat.logging import set_chat_context
from onechat.responses import success_response
from onechat.schemas.chat import ChatRequest
from onechat.services import chat as chat_service
from onechat.services.chat import ChatDeps
from onechat.services.key_store import ApiKeyStore
from onechat.services.rate_limit import RateLimiter
from onechat.services.thread_cache import ThreadCache
from onechat.services.threads import get_owned_thread_or_raise

router = APIRouter(tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"


@router.post("/chat")
async def send_chat(
    body: ChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    deps: Annotated[ChatDeps, Depends(get_chat_deps)],
) -> StreamingResponse:
    """Send a user message and stream the reply.

    Errors (before streaming starts):
        rate_limit:chat (429): Over the per-minute limit.
        model_not_found:models (404): Unknown model key.
        forbidden:chat (403): Thread owned by another user.
    """
    await run_in_threadpool(limiter.check_chat_limit, viewer.user_id)

    keys = await run_in_threadpool(store.get_keys)
    force_openrouter = bool(await run_in_threadpool(store.routing_preference))

    prepared = await run_in_threadpool(
        chat_service.prepare_chat, db, cache, deps.redis_client, viewer.user_id, body
    )
    set_chat_context(prepared.thread_id, prepared.stream_id)

    return StreamingResponse(
        chat_service.stream_chat(deps, prepared, keys, force_openrouter=force_openrouter),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@router.get("/chat/{thread_id}/stream", response_model=None)
def resume_chat(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    redis_client=Depends(get_redis),
) -> StreamingResponse | Response:
    """204 when there is nothing to resume."""
    get_owned_thread_or_raise(db, viewer.user_id, thread_id, Surface.CHAT)
    events = chat_service.resume_stream(db, cache, redis_client, thread_id)
    if not events:
        return Response(status_code=204)
    return StreamingResponse(iter(events), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.post("/chat/{thread_id}/stop")
def stop_chat(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    redis_client=Depends(get_redis),
) -> dict:
    result = chat_service.stop_chat_stream(db, cache, redis_client, viewer.user_id, thread_id)
    return success_response(result.model_dump())


@router.post("/chat/streams/{stream_id}/stop")
def stop_stream_by_id(
    stream_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    redis_client=Depends(get_redis),
) -> dict:
    """Publish an abort for a stream on one of the viewer's threads.

    Errors:
        not_found:chat (404): Unknown or expired stream id.
        forbidden:chat (403): Stream of another user's thread.
    """
    result = chat_service.stop_owned_stream(db, redis_client, viewer.user_id, stream_id)
    return success_response(result.model_dump())
