"""
Pydantic schemas for video operations
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 5000


class StoredFileInfo(BaseModel):
    """Location of a stored blob."""

    url: Optional[str] = Field(None, description="Public URL of the blob")
    public_id: str = Field(..., description="Storage handle used to delete the blob")


class VideoCreate(BaseModel):
    """Text fields of a new upload."""

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    owner_id: Optional[UUID] = None


class VideoUpdate(BaseModel):
    """Text fields of an update; omitted fields are left unchanged."""

    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, min_length=1, max_length=DESCRIPTION_MAX_LENGTH)


class VideoResponse(BaseModel):
    """Schema for a video record."""

    id: UUID = Field(..., description="Unique video ID")
    title: str
    description: str
    owner_id: Optional[UUID] = None
    video_file: Optional[StoredFileInfo] = None
    thumbnail: Optional[StoredFileInfo] = None
    duration: Optional[float] = Field(None, description="Duration in seconds, or file size when unknown")
    views: int = 0
    is_published: bool = True
    upload_status: str
    error_message: Optional[str] = None
    retry_count: int = 0
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VideoListResponse(BaseModel):
    """Schema for paginated video list response."""

    videos: List[VideoResponse] = Field(..., description="List of videos")
    total_count: int = Field(..., ge=0, description="Total number of videos")
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1, description="Number of items per page")
    total_pages: int = Field(..., ge=0, description="Total number of pages")
    has_more: bool = Field(..., description="Whether there are more pages")


class VideoJobAccepted(BaseModel):
    """Handle returned when a lifecycle job has been scheduled."""

    video_id: UUID
    job_id: UUID
    upload_status: str
    message: str


class VideoStatusResponse(BaseModel):
    """Polling view of a video's lifecycle state."""

    video_id: UUID
    upload_status: str
    job_id: Optional[UUID] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    is_deleted: bool = False
    video_file: Optional[StoredFileInfo] = None
    thumbnail: Optional[StoredFileInfo] = None
    is_processing_complete: bool = False


class VideoStats(BaseModel):
    """Schema for video statistics."""

    total_videos: int = Field(..., ge=0)
    active_videos: int = Field(..., ge=0)
    soft_deleted_videos: int = Field(..., ge=0)
    hard_delete_jobs: int = Field(..., ge=0, description="Scheduled hard delete jobs")
    recovery_window_days: int


class DeletedVideo(BaseModel):
    """Soft deleted video with its recovery countdown."""

    id: UUID
    title: str
    description: str
    deleted_at: Optional[datetime] = None
    hard_delete_job_id: Optional[UUID] = None
    created_at: datetime
    days_since_deletion: int
    days_left: int
    can_recover: bool


class DeletedVideoList(BaseModel):
    videos: List[DeletedVideo]


class ForceDeleteResponse(BaseModel):
    video_id: UUID
    job_id: UUID
    title: str
    message: str = "Video scheduled for immediate deletion"
