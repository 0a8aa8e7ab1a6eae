"""
Staging area for incoming uploads.

Request handlers copy multipart files here before scheduling a job; the
processors read them back and remove them once the job is settled.
"""

import logging
import os
from typing import Iterable, Optional
from uuid import uuid4

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from app.config import get_settings
from app.schemas.upload import StagedFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


async def stage_upload(file: UploadFile, directory: Optional[str] = None) -> StagedFile:
    """
    Copy an uploaded file into the staging directory.

    Args:
        file: Multipart upload from FastAPI
        directory: Staging directory, defaults to the configured upload directory

    Returns:
        StagedFile describing the staged copy
    """
    directory = directory or get_settings().upload_directory
    await aiofiles.os.makedirs(directory, exist_ok=True)

    filename = file.filename or "upload"
    extension = os.path.splitext(filename)[1].lower()
    path = os.path.abspath(os.path.join(directory, f"{uuid4().hex}{extension}"))

    size = 0
    await file.seek(0)
    async with aiofiles.open(path, "wb") as out:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            await out.write(chunk)

    logger.debug(f"Staged {filename} ({size} bytes) at {path}")
    return StagedFile(
        path=path,
        filename=filename,
        content_type=file.content_type or "application/octet-stream",
        size=size,
    )


async def discard_staged(files: Iterable[Optional[StagedFile]]) -> None:
    """Remove staged copies; missing files are ignored and other errors logged."""
    for staged in files:
        if staged is None:
            continue
        try:
            await aiofiles.os.remove(staged.path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove staged file {staged.path}: {e}")
