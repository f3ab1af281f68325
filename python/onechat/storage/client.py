"""Blob storage client abstraction.

Operations used by the attachment and image-generation flows:
- Signed upload URLs (direct browser uploads)
- Signed download URLs (private attachment access)
- Object existence checks (upload confirmation)
- Server-side uploads (generated images)
- Object deletion (best effort)

All methods receive the full storage path; prefixes are applied by
onechat.storage.paths only.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import uuid4

import httpx

from onechat.config import get_settings
from onechat.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignedUpload:
    """Signed upload target for a browser upload."""

    path: str
    token: str


@dataclass(frozen=True)
class ObjectMetadata:
    """Storage object metadata. Advisory only; existence is the reliable signal."""

    content_type: str
    size_bytes: int


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "storage_error"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    @abstractmethod
    def sign_upload(self, path: str, *, content_type: str, expires_in: int = 300) -> SignedUpload:
        """Create a signed upload token for direct browser upload.

        Raises:
            StorageError: If signing fails.
        """
        ...

    @abstractmethod
    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        """Create a signed download URL.

        Raises:
            StorageError: If signing fails.
        """
        ...

    @abstractmethod
    def head_object(self, path: str) -> ObjectMetadata | None:
        """Object metadata if it exists, None otherwise."""
        ...

    @abstractmethod
    def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        """Upload bytes from the server.

        Raises:
            StorageError: If the upload fails.
        """
        ...

    @abstractmethod
    def delete_object(self, path: str) -> None:
        """Delete an object. Best effort: logs failures, never raises."""
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Stable URL for an object in a public bucket."""
        ...


class StorageClient(StorageClientBase):
    """Storage client for the Supabase storage HTTP API."""

    def __init__(self, storage_url: str, service_key: str, bucket: str = "attachments"):
        self._base_url = storage_url.rstrip("/")
        self._bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, path: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{path}"

    def sign_upload(self, path: str, *, content_type: str, expires_in: int = 300) -> SignedUpload:
        url = f"{self._storage_url}/object/upload/sign/{self._bucket}/{path}"

        with httpx.Client() as client:
            response = client.post(
                url, headers=self._headers, json={"expiresIn": expires_in}, timeout=30.0
            )

        if response.status_code != 200:
            raise StorageError(
                f"Failed to sign upload: {response.status_code}", code="sign_upload_failed"
            )

        data = response.json()
        token = data.get("token", "")
        if not token:
            signed_url = data.get("url", "")
            if "token=" in signed_url:
                token = signed_url.split("token=")[1].split("&")[0]

        return SignedUpload(path=path, token=token)

    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        url = f"{self._storage_url}/object/sign/{self._bucket}/{path}"

        with httpx.Client() as client:
            response = client.post(
                url, headers=self._headers, json={"expiresIn": expires_in}, timeout=30.0
            )

        if response.status_code != 200:
            raise StorageError(
                f"Failed to sign download: {response.status_code}", code="sign_download_failed"
            )

        data = response.json()
        signed_path = data.get("signedURL") or data.get("signedUrl") or ""
        if not signed_path:
            raise StorageError(
                "Failed to sign download: missing signed URL", code="sign_download_failed"
            )

        if signed_path.startswith(("http://", "https://")):
            return signed_path
        if signed_path.startswith("/storage/"):
            return f"{self._base_url}{signed_path}"
        return f"{self._storage_url}/{signed_path.lstrip('/')}"

    def head_object(self, path: str) -> ObjectMetadata | None:
        with httpx.Client() as client:
            response = client.head(self._object_url(path), headers=self._headers, timeout=30.0)

        # Anything but 200 is treated as missing
        if response.status_code != 200:
            return None

        return ObjectMetadata(
            content_type=response.headers.get("content-type", "application/octet-stream"),
            size_bytes=int(response.headers.get("content-length", "0")),
        )

    def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        headers = {**self._headers, "Content-Type": content_type, "x-upsert": "true"}

        with httpx.Client() as client:
            response = client.post(
                self._object_url(path), headers=headers, content=data, timeout=60.0
            )

        if response.status_code not in (200, 201):
            raise StorageError(
                f"Failed to upload object: {response.status_code}", code="upload_failed"
            )

    def delete_object(self, path: str) -> None:
        try:
            with httpx.Client() as client:
                response = client.delete(
                    self._object_url(path), headers=self._headers, timeout=30.0
                )
            if response.status_code not in (200, 204, 404):
                logger.warning(
                    "storage_delete_failed", path=path, status_code=response.status_code
                )
        except httpx.HTTPError as e:
            logger.warning("storage_delete_error", path=path, error=str(e))

    def public_url(self, path: str) -> str:
        return f"{self._storage_url}/object/public/{self._bucket}/{path}"


class FakeStorageClient(StorageClientBase):
    """In-memory storage client for tests and local development."""

    def __init__(self):
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._signed_uploads: dict[str, str] = {}
        self.deleted: list[str] = []

    def sign_upload(self, path: str, *, content_type: str, expires_in: int = 300) -> SignedUpload:
        token = f"fake-token-{uuid4()}"
        self._signed_uploads[path] = token
        return SignedUpload(path=path, token=token)

    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        return f"https://fake-storage.test/download/{path}?token=fake-{uuid4()}"

    def head_object(self, path: str) -> ObjectMetadata | None:
        if path not in self._objects:
            return None
        content, content_type = self._objects[path]
        return ObjectMetadata(content_type=content_type, size_bytes=len(content))

    def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        self._objects[path] = (data, content_type)

    def delete_object(self, path: str) -> None:
        self._objects.pop(path, None)
        self.deleted.append(path)

    def public_url(self, path: str) -> str:
        return f"https://fake-storage.test/public/{path}"

    def get_object(self, path: str) -> bytes | None:
        """Stored bytes for a path (test helper)."""
        entry = self._objects.get(path)
        return entry[0] if entry else None


def get_storage_client() -> StorageClientBase:
    """StorageClient when STORAGE_URL and STORAGE_SERVICE_KEY are set, else the fake."""
    settings = get_settings()
    if settings.storage_url and settings.storage_service_key:
        return StorageClient(
            storage_url=settings.storage_url,
            service_key=settings.storage_service_key,
            bucket=settings.storage_bucket,
        )
    return FakeStorageClient()
