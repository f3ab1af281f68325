"""Attachment upload service layer.

Uploads go straight from the browser to blob storage:

1. create_upload validates the request and signs an upload to
   {user_id}/attachments/{attachment_id}/{file_name}
2. the browser uploads the bytes with the token
3. confirm_upload checks the object exists and inserts the attachment row

Key invariants:
- No attachment row exists until the object is confirmed in storage
- Storage paths embed the owner, so a confirm can only ever claim the
  caller's own upload
- Storage deletes are best effort and happen after the row is gone
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from onechat.config import get_settings
from onechat.db.models import Attachment, AttachmentType
from onechat.errors import ApiError, ForbiddenError, NotFoundError, Surface
from onechat.logging import get_logger
from onechat.schemas.attachment import UploadOut
from onechat.schemas.thread import AttachmentOut, AttachmentStatsOut
from onechat.services.catalog import model_supports_file_type
from onechat.services.thread_cache import ThreadCache
from onechat.storage import StorageClientBase, StorageError, build_attachment_path

logger = get_logger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        # Images
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
        # Documents
        "application/pdf",
        "text/plain",
        "text/markdown",
    }
)

# Model capability lookups know plain text only
_MODEL_TYPE_ALIASES = {"text/markdown": "text/plain", "image/jpg": "image/jpeg"}


def attachment_type_for(content_type: str) -> str:
    if content_type.startswith("image/"):
        return AttachmentType.image.value
    return AttachmentType.file.value


def _validate_upload_request(
    file_name: str, content_type: str, size_bytes: int, model_key: str | None
) -> None:
    """Raises:
    ApiError(unsupported_file_type:files): Type not allowed, or not accepted by the model.
    ApiError(file_too_large:files): Over MAX_UPLOAD_BYTES.
    """
    settings = get_settings()

    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ApiError(
            "unsupported_file_type:files", f"Content type '{content_type}' is not allowed"
        )

    if size_bytes > settings.max_upload_bytes:
        raise ApiError(
            "file_too_large:files",
            f"File size {size_bytes} bytes exceeds maximum {settings.max_upload_bytes} bytes.",
        )

    if model_key is not None:
        check_type = _MODEL_TYPE_ALIASES.get(content_type, content_type)
        if not model_supports_file_type(model_key, check_type):
            raise ApiError(
                "unsupported_file_type:files",
                f"{file_name} is not supported by the selected model",
            )


def create_upload(
    db: Session,
    storage: StorageClientBase,
    user_id: str,
    file_name: str,
    content_type: str,
    size_bytes: int,
    model_key: str | None = None,
) -> UploadOut:
    """Sign a direct upload for a new attachment.

    Args:
        db: Database session (unused until confirm; kept for a uniform signature).
        storage: Blob storage client.
        user_id: The uploader.
        file_name: Original file name.
        content_type: Declared MIME type.
        size_bytes: Declared size.
        model_key: When set, the model must accept the file type.

    Raises:
        ApiError: unsupported_file_type:files, file_too_large:files, or
            upload_failed:files when signing fails.
    """
    settings = get_settings()
    _validate_upload_request(file_name, content_type, size_bytes, model_key)

    attachment_id = str(uuid4())
    storage_path = build_attachment_path(user_id, attachment_id, file_name)

    try:
        signed = storage.sign_upload(
            storage_path,
            content_type=content_type,
            expires_in=settings.signed_url_expiry_s,
        )
    except StorageError as e:
        logger.error(
            "attachment_sign_upload_failed",
            attachment_id=attachment_id,
            error=e.message,
        )
        raise ApiError("upload_failed:files", "Failed to initialize upload") from e

    logger.info(
        "attachment_upload_signed",
        attachment_id=attachment_id,
        content_type=content_type,
        size_bytes=size_bytes,
    )
    return UploadOut(
        attachment_id=attachment_id,
        storage_path=storage_path,
        token=signed.token,
        expires_at=datetime.now(UTC) + timedelta(seconds=settings.signed_url_expiry_s),
    )


def confirm_upload(
    db: Session,
    storage: StorageClientBase,
    user_id: str,
    attachment_id: str,
    file_name: str,
    content_type: str,
) -> AttachmentOut:
    """Record an uploaded object as an attachment. Idempotent per attachment id.

    Raises:
        ApiError(unsupported_file_type:files): Content type not allowed.
        ForbiddenError(forbidden:attachment): The id belongs to another user.
        ApiError(upload_failed:files): The object is not in storage.
    """
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ApiError(
            "unsupported_file_type:files", f"Content type '{content_type}' is not allowed"
        )

    existing = db.get(Attachment, attachment_id)
    if existing is not None:
        if existing.user_id != user_id:
            raise ForbiddenError(Surface.ATTACHMENT)
        return AttachmentOut.model_validate(existing)

    storage_path = build_attachment_path(user_id, attachment_id, file_name)
    metadata = storage.head_object(storage_path)
    if metadata is None:
        logger.warning("attachment_confirm_missing_object", attachment_id=attachment_id)
        raise ApiError("upload_failed:files", "Upload not found in storage. Please try again.")

    attachment = Attachment(
        id=attachment_id,
        user_id=user_id,
        file_key=storage_path,
        file_name=file_name,
        file_size=metadata.size_bytes,
        mime_type=metadata.content_type or content_type,
        attachment_type=attachment_type_for(content_type),
        attachment_url=storage.public_url(storage_path),
    )
    db.add(attachment)
    db.flush()
    db.commit()

    logger.info("attachment_confirmed", attachment_id=attachment_id, size_bytes=metadata.size_bytes)
    return AttachmentOut.model_validate(attachment)


def get_attachment_for_owner(db: Session, user_id: str, attachment_id: str) -> Attachment:
    """Raises:
    NotFoundError(not_found:attachment): Unknown id.
    ForbiddenError(forbidden:attachment): Owned by someone else.
    """
    attachment = db.get(Attachment, attachment_id)
    if attachment is None:
        raise NotFoundError(Surface.ATTACHMENT, "Attachment not found")
    if attachment.user_id != user_id:
        raise ForbiddenError(Surface.ATTACHMENT)
    return attachment


def delete_attachment(
    db: Session,
    cache: ThreadCache,
    storage: StorageClientBase,
    user_id: str,
    attachment_id: str,
) -> None:
    """Delete an attachment row and its object. Owner only.

    Message links cascade; threads that showed the attachment are invalidated.
    """
    attachment = get_attachment_for_owner(db, user_id, attachment_id)
    file_key = attachment.file_key
    thread_ids = {link.message.thread_id for link in attachment.message_links}

    db.execute(delete(Attachment).where(Attachment.id == attachment_id))
    db.flush()
    db.commit()

    storage.delete_object(file_key)

    for thread_id in thread_ids:
        cache.invalidate_thread(thread_id)
    logger.info("attachment_deleted", attachment_id=attachment_id)


def get_attachment_stats(db: Session, user_id: str) -> AttachmentStatsOut:
    """File counts and total size for a user's attachments."""
    image_types = (AttachmentType.image.value, AttachmentType.generated_image.value)
    is_image = Attachment.attachment_type.in_(image_types)

    row = db.execute(
        select(
            func.count(Attachment.id),
            func.coalesce(func.sum(Attachment.file_size), 0),
            func.count(Attachment.id).filter(is_image),
        ).where(Attachment.user_id == user_id)
    ).one()
    total, total_size, images = row

    return AttachmentStatsOut(
        total_files=total,
        total_size=int(total_size),
        image_count=images,
        file_count=total - images,
    )
