"""
File storage contract shared by every storage backend
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, List, Optional, Sequence, Tuple
from uuid import uuid4

from app.schemas.upload import StagedFile

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage backend cannot complete an operation."""


class StorageNotFoundError(StorageError):
    """Raised when the object addressed by a public id does not exist."""


@dataclass(frozen=True)
class StoredFile:
    """Location of an uploaded blob. public_id is all that is needed to delete it."""

    url: str
    public_id: str


class FileStorage(ABC):
    """Capability interface implemented by local, S3 and ImageKit storage."""

    name: str = "storage"

    @abstractmethod
    async def upload_file(self, file: StagedFile, folder: str) -> StoredFile:
        """
        Upload a staged file into a folder.

        Either returns a complete StoredFile or raises StorageError; a partial
        object is never visible to callers.
        """

    @abstractmethod
    async def delete_file(self, public_id: str) -> None:
        """
        Delete a previously uploaded blob.

        Raises:
            StorageNotFoundError: If the object does not exist
            StorageError: On any other backend failure
        """

    @staticmethod
    def unique_name(file: StagedFile) -> str:
        """Object name used for a new upload, keeping the original extension."""
        extension = file.extension
        return f"{uuid4().hex}.{extension}" if extension else uuid4().hex


@dataclass(frozen=True)
class MediaStorages:
    """Storage backends chosen independently per content class."""

    video: FileStorage
    thumbnail: FileStorage


async def settle_all(
    operations: Sequence[Tuple[str, Awaitable[Any]]]
) -> List[Tuple[str, Optional[BaseException]]]:
    """
    Run labelled awaitables concurrently and collect every outcome.

    Failures are logged with their label and returned, never raised.

    Args:
        operations: (label, awaitable) pairs

    Returns:
        (label, exception or None) for each operation, in input order
    """
    if not operations:
        return []

    labels = [label for label, _ in operations]
    results = await asyncio.gather(*(op for _, op in operations), return_exceptions=True)

    settled = []
    for label, result in zip(labels, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(f"Best-effort operation '{label}' failed: {result}")
            settled.append((label, result))
        else:
            settled.append((label, None))
    return settled
