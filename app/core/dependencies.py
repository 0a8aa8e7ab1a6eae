"""
FastAPI dependencies for shared services and upload validation
"""

import os
from typing import List

from fastapi import HTTPException, Request, UploadFile, status

from app.config import get_settings
from app.services.job_queue import JobQueue

settings = get_settings()


def get_job_queue(request: Request) -> JobQueue:
    """
    Get the job queue created at startup.

    Raises:
        HTTPException: If the application started without a queue
    """
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not available"
        )
    return queue


def _check_upload(file: UploadFile, label: str, max_size_mb: int, allowed_types: List[str]) -> int:
    if not file or not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label} file is required"
        )

    # Check file size
    file.file.seek(0, 2)  # Seek to end
    file_size = file.file.tell()
    file.file.seek(0)  # Reset to beginning

    if file_size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label} file is empty"
        )

    if file_size > max_size_mb * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"{label} file too large. Maximum size: {max_size_mb}MB"
        )

    if (file.content_type or "").lower() not in allowed_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported {label.lower()} type. Allowed: {', '.join(allowed_types)}"
        )

    return file_size


def verify_video_upload(file: UploadFile) -> int:
    """
    Verify an uploaded video meets size and type requirements.

    Returns:
        File size in bytes

    Raises:
        HTTPException: If file validation fails
    """
    return _check_upload(file, "Video", settings.max_video_size_mb, settings.allowed_video_types)


def verify_thumbnail_upload(file: UploadFile) -> int:
    """Verify an uploaded thumbnail; see verify_video_upload."""
    return _check_upload(
        file, "Thumbnail", settings.max_thumbnail_size_mb, settings.allowed_thumbnail_types
    )


def verify_upload_directory() -> bool:
    """
    Verify upload directory exists and is writable.

    Returns:
        bool: True if directory is accessible
    """
    try:
        os.makedirs(settings.upload_directory, exist_ok=True)
        test_file = os.path.join(settings.upload_directory, ".test")
        with open(test_file, "w") as f:
            f.write("test")
        os.remove(test_file)
        return True
    except OSError:
        return False
