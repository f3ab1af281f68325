"""Blob storage for attachments and generated images.

Provides:
- StorageClient for the Supabase-style storage HTTP API
- FakeStorageClient for tests
- Path building utilities with test-run isolation prefixes
"""

from onechat.storage.client import (
    FakeStorageClient,
    ObjectMetadata,
    SignedUpload,
    StorageClient,
    StorageClientBase,
    StorageError,
    get_storage_client,
)
from onechat.storage.paths import build_attachment_path, build_generated_image_path

__all__ = [
    "StorageClient",
    "StorageClientBase",
    "StorageError",
    "FakeStorageClient",
    "SignedUpload",
    "ObjectMetadata",
    "get_storage_client",
    "build_attachment_path",
    "build_generated_image_path",
]
