"""Sharing routes.

Public reads (no token required; a valid token identifies the owner):
- GET /share/{thread_id}: Full thread, public or owned by the viewer
- GET /share/partial/{token}: Thread prefix behind a partial-share token

Owner routes:
- POST /partial-shares: Share a thread up to a message (7 days)
- GET /partial-shares: The viewer's live shares, newest first
- DELETE /partial-shares/{token}: Revoke a share
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from onechat.api.deps import get_db, get_optional_viewer, get_redis, get_thread_cache, get_viewer
from onechat.auth.middleware import Viewer
from onechat.errors import NotFoundError, Surface
from onechat.responses import success_response
from onechat.schemas.thread import CreatePartialShareRequest
from onechat.services import partial_shares as shares_service
from onechat.services import threads as threads_service
from onechat.services.thread_cache import ThreadCache

router = APIRouter(tags=["sharing"])


@router.get("/share/partial/{token}")
def read_partial_share(
    token: str,
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    redis_client=Depends(get_redis),
) -> dict:
    """Errors:
    not_found:thread (404): Unknown or expired token.
    """
    data = shares_service.get_partial_thread_data(db, cache, redis_client, token)
    if data is None:
        raise NotFoundError(Surface.THREAD, "Share link not found or expired")
    return success_response(data.model_dump(mode="json"))


@router.get("/share/{thread_id}")
def read_shared_thread(
    thread_id: str,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
) -> dict:
    """Errors:
    not_found:thread (404): Missing, or private and the viewer is not the owner.
    """
    data = threads_service.get_public_thread(
        db, cache, thread_id, viewer.user_id if viewer else None
    )
    return success_response(data.model_dump(mode="json"))


@router.post("/partial-shares", status_code=201)
def create_partial_share(
    body: CreatePartialShareRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    redis_client=Depends(get_redis),
) -> dict:
    share = shares_service.create_partial_share(
        db, cache, redis_client, viewer.user_id, body.thread_id, body.message_id
    )
    return success_response(share.model_dump(mode="json"))


@router.get("/partial-shares")
def list_partial_shares(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    redis_client=Depends(get_redis),
) -> dict:
    shares = shares_service.list_user_partial_shares(redis_client, viewer.user_id)
    return success_response([s.model_dump(mode="json") for s in shares])


@router.delete("/partial-shares/{token}", status_code=204)
def delete_partial_share(
    token: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    redis_client=Depends(get_redis),
) -> Response:
    """Errors:
    not_found:thread (404): No such share.
    forbidden:thread (403): Share owned by someone else.
    """
    if not shares_service.delete_partial_share(redis_client, viewer.user_id, token):
        raise NotFoundError(Surface.THREAD, "Share link not found")
    return Response(status_code=204)
