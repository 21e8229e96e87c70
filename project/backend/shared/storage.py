"""
Artifact storage.

upload(bytes, mime_type) -> url and download(url) -> bytes for audio, frames
and videos. Uploads go to Supabase Storage or fal.ai storage; downloads are
plain HTTP.
"""

import asyncio
import mimetypes
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import fal_client
import httpx

from shared.config import settings
from shared.errors import ArtifactDownloadError, ArtifactUploadError, CircuitOpenError, TransientProviderError
from shared.logging import get_logger
from shared.resilience import STORAGE, IntegrationGuard, get_guard
from shared.retry import is_retryable_http_status

logger = get_logger(__name__)

_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "video/mp4": ".mp4",
}


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"


class StorageClient(ABC):
    """Base artifact store: subclasses implement _put()."""

    def __init__(self, timeout: Optional[float] = None, guard: Optional[IntegrationGuard] = None):
        self.timeout = timeout or settings.download_timeout_seconds
        self._guard = guard

    @property
    def guard(self) -> IntegrationGuard:
        if self._guard is None:
            self._guard = get_guard(STORAGE)
        return self._guard

    @abstractmethod
    async def _put(self, data: bytes, mime_type: str, path: str) -> str:
        """Write the object and return its public URL."""

    async def upload(self, data: bytes, mime_type: str, path: Optional[str] = None) -> str:
        """
        Store bytes and return a URL the generation providers can fetch.

        Args:
            data: File contents
            mime_type: MIME type recorded with the object
            path: Object path (generated when omitted)

        Raises:
            ArtifactUploadError: If the store rejects the upload
        """
        if not data:
            raise ArtifactUploadError("Refusing to upload an empty artifact")
        path = path or f"artifacts/{uuid.uuid4().hex}{extension_for(mime_type)}"
        try:
            url = await self._put(data, mime_type, path)
        except ArtifactUploadError:
            raise
        except Exception as e:
            logger.error("Artifact upload failed", exc_info=e, extra={"path": path, "mime_type": mime_type})
            raise ArtifactUploadError(f"Failed to upload {path}: {str(e)}") from e
        logger.info("Artifact uploaded", extra={"path": path, "mime_type": mime_type, "size": len(data)})
        return url

    async def upload_file(self, file_path: Union[str, Path], mime_type: str, path: Optional[str] = None) -> str:
        """Upload a local file."""
        data = await asyncio.to_thread(Path(file_path).read_bytes)
        return await self.upload(data, mime_type, path=path)

    async def _fetch(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientProviderError(f"Download of {url} failed: {str(e)}", provider="artifact-store") from e
        if response.status_code >= 400:
            if is_retryable_http_status(response.status_code, "GET"):
                raise TransientProviderError(
                    f"Download of {url} returned {response.status_code}",
                    provider="artifact-store",
                    http_status=response.status_code,
                )
            raise ArtifactDownloadError(
                f"Download of {url} returned {response.status_code}",
                code="DOWNLOAD_FAILED"
            )
        return response.content

    async def download(self, url: str) -> bytes:
        """
        Fetch an artifact.

        Raises:
            ArtifactDownloadError: On any non-success after retries, or while
                the store's circuit is open
        """
        if not url or not url.startswith(("http://", "https://")):
            raise ArtifactDownloadError(f"Invalid artifact URL: {url!r}", code="DOWNLOAD_FAILED")
        try:
            data = await self.guard.call(self._fetch, url, operation="download")
        except (TransientProviderError, CircuitOpenError) as e:
            raise ArtifactDownloadError(str(e), code="DOWNLOAD_FAILED") from e
        if not data:
            raise ArtifactDownloadError(f"Downloaded artifact is empty: {url}", code="DOWNLOAD_FAILED")
        return data

    async def download_to(self, url: str, destination: Union[str, Path]) -> Path:
        """Fetch an artifact into a local file."""
        data = await self.download(url)
        destination = Path(destination)
        await asyncio.to_thread(destination.write_bytes, data)
        return destination


class SupabaseStorageClient(StorageClient):
    """Artifacts in a public Supabase Storage bucket."""

    def __init__(self, bucket: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.bucket = bucket or settings.artifact_bucket

    async def _put(self, data: bytes, mime_type: str, path: str) -> str:
        from shared.database import db

        bucket = db.client.storage.from_(self.bucket)
        await asyncio.to_thread(bucket.upload, path, data, {"content-type": mime_type})
        return await asyncio.to_thread(bucket.get_public_url, path)


class FalStorageClient(StorageClient):
    """Artifacts in fal.ai's CDN storage, directly readable by fal models."""

    def __init__(self, client: Optional[fal_client.AsyncClient] = None, timeout: Optional[float] = None):
        super().__init__(timeout)
        self._client = client

    @property
    def client(self) -> fal_client.AsyncClient:
        if self._client is None:
            self._client = fal_client.AsyncClient(key=settings.fal_key or None)
        return self._client

    async def _put(self, data: bytes, mime_type: str, path: str) -> str:
        return await self.client.upload(data, mime_type, file_name=Path(path).name)


def create_storage_client() -> StorageClient:
    """Storage backend selected by settings.artifact_backend."""
    if settings.artifact_backend == "fal":
        return FalStorageClient()
    return SupabaseStorageClient()
