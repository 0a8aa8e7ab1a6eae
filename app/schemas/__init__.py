"""
Pydantic schemas for the Video Lifecycle API
"""

from app.schemas.job import (
    JobDetail,
    JobFilter,
    JobList,
    JobName,
    JobQueueHealth,
    JobStats,
    JobStatusFilter,
    JobSummary,
    MessageResponse,
)
from app.schemas.upload import HealthCheck, StagedFile
from app.schemas.video import (
    DeletedVideoList,
    VideoJobAccepted,
    VideoListResponse,
    VideoResponse,
    VideoStats,
    VideoStatusResponse,
)

__all__ = [
    "JobDetail",
    "JobFilter",
    "JobList",
    "JobName",
    "JobQueueHealth",
    "JobStats",
    "JobStatusFilter",
    "JobSummary",
    "MessageResponse",
    "HealthCheck",
    "StagedFile",
    "DeletedVideoList",
    "VideoJobAccepted",
    "VideoListResponse",
    "VideoResponse",
    "VideoStats",
    "VideoStatusResponse",
]
