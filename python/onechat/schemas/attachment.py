"""Attachment upload schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class CreateUploadRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1)
    size_bytes: int = Field(..., ge=0)
    model_key: str | None = None


class UploadOut(BaseModel):
    """Signed direct-upload target."""

    attachment_id: str
    storage_path: str
    token: str
    expires_at: datetime


class ConfirmUploadRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1)
