"""Thread and message routes.

Routes are transport-only: each calls one service function.

Threads:
- GET /threads: Sidebar groups (pinned, today, yesterday, last 7/30 days, older)
- GET /threads/{id}: Thread with messages and the model the view starts with
- PATCH /threads/{id}: Rename
- DELETE /threads/{id}: Delete with messages
- POST /threads/{id}/visibility: Toggle private/public
- POST /threads/{id}/branch: Copy up to a message into a new thread
- POST /threads/{id}/title: Generate a title from the first query (inline or queued)
- GET /threads/{id}/last-model: Model of the latest assistant message

Messages:
- DELETE /threads/{id}/messages/{mid}/trailing: Delete after (or from) a message
- POST /threads/{id}/messages/{mid}/retry: History before a message and its model

All routes require authentication.
"""

from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import redis
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from onechat.api.deps import (
    get_cookies,
    get_db,
    get_key_store,
    get_llm_router,
    get_redis,
    get_thread_cache,
    get_viewer,
)
from onechat.auth.middleware import Viewer
from onechat.config import get_settings
from onechat.errors import BadRequestError
from onechat.logging import get_request_id
from onechat.responses import success_response
from onechat.schemas.thread import BranchOutRequest, GenerateTitleRequest, RenameThreadRequest
from onechat.services import branching as branching_service
from onechat.services import threads as threads_service
from onechat.services.key_store import ApiKeyStore
from onechat.services.llm import LLMError, LLMRouter
from onechat.services.persistence import CookiePersistence
from onechat.services.preferences import ModelPreferences, PinnedThreadsStore
from onechat.services.routing import resolve_initial_model
from onechat.services.streams import clear_chat_streams
from onechat.services.thread_cache import ThreadCache
from onechat.services.thread_grouping import filter_threads, group_threads
from onechat.tasks import generate_thread_title

router = APIRouter(tags=["threads"])


# =============================================================================
# Thread Endpoints
# =============================================================================


@router.get("/threads")
def list_threads(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
    q: str | None = Query(default=None, max_length=200, description="Title filter"),
    tz: str = Query(default="UTC", description="IANA timezone for day boundaries"),
) -> dict:
    """Errors:
    bad_request:api (400): Unknown timezone.
    """
    try:
        zone = ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise BadRequestError(cause=f"Unknown timezone: {tz}") from e

    threads = filter_threads(threads_service.get_user_threads(db, cache, viewer.user_id), q)
    grouped = group_threads(threads, PinnedThreadsStore(cookies).pinned, tz=zone)
    return success_response(grouped.model_dump(mode="json"))


@router.get("/threads/{thread_id}")
def get_thread(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
) -> dict:
    """Owner, or anyone for a public thread.

    Errors:
        not_found:thread (404): Missing, or private and not owned.
    """
    data = threads_service.get_public_thread(db, cache, thread_id, viewer.user_id)
    payload = data.model_dump(mode="json")
    payload["initial_model"] = resolve_initial_model(
        payload["messages"], ModelPreferences(cookies).selected_model
    )
    return success_response(payload)


@router.patch("/threads/{thread_id}")
def rename_thread(
    thread_id: str,
    body: RenameThreadRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
) -> dict:
    result = threads_service.rename_thread(db, cache, viewer.user_id, thread_id, body.title)
    return success_response(result.model_dump(mode="json"))


@router.delete("/threads/{thread_id}", status_code=204)
def delete_thread(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    cookies: Annotated[CookiePersistence, Depends(get_cookies)],
    redis_client: Annotated[redis.Redis | None, Depends(get_redis)],
) -> Response:
    """Deletes the thread, its messages, its stream registry and its pin."""
    threads_service.delete_chat(db, cache, viewer.user_id, thread_id)
    clear_chat_streams(redis_client, thread_id)

    pins = PinnedThreadsStore(cookies)
    if pins.is_pinned(thread_id):
        pins.unpin(thread_id)

    response = Response(status_code=204)
    cookies.apply(response)
    return response


@router.post("/threads/{thread_id}/visibility")
def toggle_visibility(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
) -> dict:
    result = threads_service.toggle_thread_visibility(db, cache, viewer.user_id, thread_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/threads/{thread_id}/branch", status_code=201)
def branch_thread(
    thread_id: str,
    body: BranchOutRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
) -> dict:
    """Errors:
    not_found:thread (404): Thread or message missing.
    unauthorized:thread (401): Thread owned by someone else.
    bad_request:thread (400): Nothing to copy.
    """
    result = branching_service.branch_out(
        db, cache, viewer.user_id, thread_id, body.message_id, body.new_thread_id
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/threads/{thread_id}/title")
async def generate_title(
    thread_id: str,
    body: GenerateTitleRequest,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    store: Annotated[ApiKeyStore, Depends(get_key_store)],
) -> dict:
    """Errors:
    api_key_missing:models (503): No OpenAI key for the title model.
    """
    if body.background:
        threads_service.get_owned_thread_or_raise(db, viewer.user_id, thread_id)
        generate_thread_title.apply_async(
            args=[thread_id, viewer.user_id, body.user_query],
            kwargs={"request_id": get_request_id()},
        )
        response.status_code = 202
        return success_response({"thread_id": thread_id, "status": "queued"})

    try:
        title = await threads_service.generate_and_update_thread_title(
            db,
            cache,
            llm_router,
            viewer.user_id,
            thread_id,
            body.user_query,
            store.get_keys(),
            platform_openai_key=get_settings().openai_api_key,
        )
    except LLMError as e:
        raise e.to_api_error() from e
    return success_response({"thread_id": thread_id, "title": title})


@router.get("/threads/{thread_id}/last-model")
def last_model(
    thread_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    threads_service.get_owned_thread_or_raise(db, viewer.user_id, thread_id)
    model = threads_service.get_last_assistant_model(db, thread_id)
    return success_response({"thread_id": thread_id, "model": model})


# =============================================================================
# Message Endpoints
# =============================================================================


@router.delete("/threads/{thread_id}/messages/{message_id}/trailing")
def delete_trailing(
    thread_id: str,
    message_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    inclusive: bool = Query(default=False, description="Also delete the message itself"),
) -> dict:
    """Delete messages created after the reference message, or from it
    onward when inclusive.
    """
    if inclusive:
        deleted = threads_service.delete_message_and_trailing(
            db, cache, viewer.user_id, thread_id, message_id
        )
    else:
        deleted = threads_service.delete_trailing_messages(
            db, cache, viewer.user_id, thread_id, message_id
        )
    return success_response({"deleted": deleted})


@router.post("/threads/{thread_id}/messages/{message_id}/retry")
def retry_message(
    thread_id: str,
    message_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
) -> dict:
    result = threads_service.retry_message_with_original_model(
        db, cache, viewer.user_id, thread_id, message_id
    )
    return success_response(result.model_dump(mode="json"))
