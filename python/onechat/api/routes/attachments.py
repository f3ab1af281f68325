"""Attachment routes.

Direct upload flow:
- POST /attachments/uploads: Validate and sign an upload
- (browser uploads the bytes to storage with the token)
- POST /attachments/{id}/confirm: Record the uploaded object

Also:
- DELETE /attachments/{id}
- GET /attachments/stats
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from onechat.api.deps import get_db, get_storage, get_thread_cache, get_viewer
from onechat.auth.middleware import Viewer
from onechat.responses import success_response
from onechat.schemas.attachment import ConfirmUploadRequest, CreateUploadRequest
from onechat.services import attachments as attachments_service
from onechat.services.thread_cache import ThreadCache
from onechat.storage import StorageClientBase

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.post("/uploads", status_code=201)
def create_upload(
    body: CreateUploadRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> dict:
    """Errors:
    unsupported_file_type:files (415), file_too_large:files (413),
    upload_failed:files (422).
    """
    result = attachments_service.create_upload(
        db,
        storage,
        viewer.user_id,
        body.file_name,
        body.content_type,
        body.size_bytes,
        body.model_key,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/{attachment_id}/confirm")
def confirm_upload(
    attachment_id: str,
    body: ConfirmUploadRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> dict:
    result = attachments_service.confirm_upload(
        db, storage, viewer.user_id, attachment_id, body.file_name, body.content_type
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/stats")
def attachment_stats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = attachments_service.get_attachment_stats(db, viewer.user_id)
    return success_response(result.model_dump())


@router.delete("/{attachment_id}", status_code=204)
def delete_attachment(
    attachment_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cache: Annotated[ThreadCache, Depends(get_thread_cache)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> Response:
    attachments_service.delete_attachment(db, cache, storage, viewer.user_id, attachment_id)
    return Response(status_code=204)
