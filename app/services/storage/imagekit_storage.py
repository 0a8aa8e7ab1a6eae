"""
ImageKit CDN storage backend using the ImageKit REST API
"""

import logging
from typing import Optional

import httpx

from app.config import get_settings
from app.schemas.upload import StagedFile
from app.services.storage.base import FileStorage, StorageError, StorageNotFoundError, StoredFile

logger = logging.getLogger(__name__)


class ImageKitStorage(FileStorage):
    """Uploads blobs to ImageKit; the ImageKit fileId is the public id."""

    name = "imagekit"

    def __init__(
        self,
        private_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        settings = get_settings()
        self.private_key = private_key or settings.imagekit_private_key
        if not self.private_key:
            raise ValueError("ImageKit private key must be configured")

        self.upload_url = settings.imagekit_upload_url
        self.api_url = settings.imagekit_api_url.rstrip("/")
        self.timeout = settings.imagekit_timeout_seconds
        self._client = client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        auth = httpx.BasicAuth(self.private_key, "")
        if self._client is not None:
            return await self._client.request(method, url, auth=auth, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, auth=auth, **kwargs)

    async def upload_file(self, file: StagedFile, folder: str) -> StoredFile:
        try:
            content = open(file.path, "rb")
        except OSError as e:
            raise StorageError(f"Could not read staged file {file.path}: {e}") from e

        try:
            # httpx reads the multipart body from the handle in chunks
            response = await self._request(
                "POST",
                self.upload_url,
                data={
                    "fileName": self.unique_name(file),
                    "folder": f"/{folder.strip('/')}",
                    "useUniqueFileName": "true",
                },
                files={"file": (file.filename, content, file.content_type)},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"ImageKit upload failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise StorageError(f"ImageKit upload failed: {e}") from e
        finally:
            content.close()

        if not payload.get("fileId") or not payload.get("url"):
            raise StorageError("ImageKit upload response is missing fileId or url")

        logger.debug(f"Uploaded {file.filename} to ImageKit as {payload['fileId']}")
        return StoredFile(url=payload["url"], public_id=payload["fileId"])

    async def delete_file(self, public_id: str) -> None:
        if not public_id:
            raise StorageError("Missing fileId for deletion")

        try:
            response = await self._request("DELETE", f"{self.api_url}/files/{public_id}")
        except httpx.HTTPError as e:
            raise StorageError(f"ImageKit delete failed: {e}") from e

        if response.status_code == 404:
            raise StorageNotFoundError(f"ImageKit file not found: {public_id}")
        if response.status_code >= 400:
            raise StorageError(
                f"ImageKit delete failed with status {response.status_code}: {response.text}"
            )
