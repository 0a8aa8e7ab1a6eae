"""
Database models for the Video Lifecycle API
"""

from app.models.job import Job
from app.models.video import UploadStatus, VideoRecord

__all__ = ["Job", "UploadStatus", "VideoRecord"]
