"""
Local filesystem storage backend
"""

import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from app.config import get_settings
from app.schemas.upload import StagedFile
from app.services.storage.base import FileStorage, StorageError, StorageNotFoundError, StoredFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalFileStorage(FileStorage):
    """Stores blobs under a root directory served as static files."""

    name = "local"

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.local_storage_root).resolve()
        self.base_url = (base_url if base_url is not None else settings.local_storage_base_url).rstrip("/")

    def _resolve(self, public_id: str) -> Path:
        """Map a public id to a path, refusing anything outside the root."""
        path = (self.root / public_id).resolve()
        if path == self.root or self.root not in path.parents:
            raise StorageError(f"Invalid public id: {public_id}")
        return path

    async def upload_file(self, file: StagedFile, folder: str) -> StoredFile:
        public_id = f"{folder.strip('/')}/{self.unique_name(file)}"
        target = self._resolve(public_id)
        partial = target.with_name(f".{target.name}.part")

        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(file.path, "rb") as source, aiofiles.open(partial, "wb") as dest:
                while True:
                    chunk = await source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    await dest.write(chunk)
            # Only a fully written file becomes visible under its public id
            await aiofiles.os.replace(partial, target)
        except OSError as e:
            if await aiofiles.os.path.exists(partial):
                await aiofiles.os.remove(partial)
            raise StorageError(f"Local upload failed for {file.filename}: {e}") from e

        logger.debug(f"Stored {file.filename} locally as {public_id}")
        return StoredFile(url=f"{self.base_url}/{public_id}", public_id=public_id)

    async def delete_file(self, public_id: str) -> None:
        path = self._resolve(public_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"Local file not found: {public_id}") from e
        except OSError as e:
            raise StorageError(f"Local delete failed for {public_id}: {e}") from e
