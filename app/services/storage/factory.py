"""
Storage backend selection from configuration strings
"""

from app.config import get_settings
from app.services.storage.base import FileStorage, MediaStorages
from app.services.storage.imagekit_storage import ImageKitStorage
from app.services.storage.local_storage import LocalFileStorage
from app.services.storage.s3_storage import S3Storage


def create_storage(storage_type: str) -> FileStorage:
    """
    Build the storage backend named by a configuration string.

    Args:
        storage_type: local, s3, aws or imagekit (case-insensitive)

    Returns:
        FileStorage implementation

    Raises:
        ValueError: If the type is unknown
    """
    kind = storage_type.strip().lower()
    if kind == "local":
        return LocalFileStorage()
    if kind in ("s3", "aws"):
        return S3Storage()
    if kind == "imagekit":
        return ImageKitStorage()
    raise ValueError(f"Unsupported storage type: {storage_type}")


def create_media_storages() -> MediaStorages:
    """Build the video and thumbnail backends from settings."""
    settings = get_settings()
    return MediaStorages(
        video=create_storage(settings.video_storage_type),
        thumbnail=create_storage(settings.thumbnail_storage_type),
    )
