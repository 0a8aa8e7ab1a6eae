"""
Pluggable blob storage for videos and thumbnails
"""

from app.services.storage.base import (
    FileStorage,
    MediaStorages,
    StorageError,
    StorageNotFoundError,
    StoredFile,
    settle_all,
)
from app.services.storage.factory import create_media_storages, create_storage

__all__ = [
    "FileStorage",
    "MediaStorages",
    "StorageError",
    "StorageNotFoundError",
    "StoredFile",
    "settle_all",
    "create_media_storages",
    "create_storage",
]
