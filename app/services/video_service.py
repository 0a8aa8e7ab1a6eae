"""
Video request service: the entry points that schedule lifecycle jobs
"""

import logging
import math
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import VideoNotFoundError, VideoStateError
from app.models.video import UploadStatus, VideoRecord
from app.repositories.video_repository import VideoRepository
from app.schemas.job import (
    JobFilter,
    JobName,
    JobStatusFilter,
    RecoverVideoJobData,
    SoftDeleteVideoJobData,
    UpdateVideoJobData,
    VideoJobData,
)
from app.schemas.upload import StagedFile
from app.schemas.video import (
    VideoCreate,
    VideoJobAccepted,
    VideoListResponse,
    VideoResponse,
    VideoStatusResponse,
    VideoUpdate,
)
from app.services.job_queue import JobQueue
from app.services.processors import recovery_expired
from app.services.staging import discard_staged

logger = logging.getLogger(__name__)


class VideoService:
    """Service for video lifecycle requests."""

    def __init__(self, db: AsyncSession, queue: JobQueue):
        self.db = db
        self.queue = queue
        self.repo = VideoRepository(db)
        self.settings = get_settings()

    async def publish_video(
        self,
        video_data: VideoCreate,
        video_file: StagedFile,
        thumbnail: StagedFile
    ) -> VideoJobAccepted:
        """
        Create a pending video and schedule its upload.

        Args:
            video_data: Title, description and owner
            video_file: Staged video
            thumbnail: Staged thumbnail

        Returns:
            VideoJobAccepted: Handle for polling the upload
        """
        video = await self.repo.create(
            title=video_data.title,
            description=video_data.description,
            owner_id=video_data.owner_id,
        )

        try:
            job = await self.queue.now(
                JobName.PROCESS_VIDEO.value,
                VideoJobData(
                    video_id=video.id,
                    video_file=video_file,
                    thumbnail=thumbnail,
                    title=video_data.title,
                    description=video_data.description,
                    owner_id=video_data.owner_id,
                )
            )
        except Exception:
            await self.repo.delete(video.id)
            await discard_staged([video_file, thumbnail])
            raise

        await self.repo.update_fields(video.id, job_id=job.id)
        logger.info(f"Video {video.id}: upload scheduled as job {job.id}")

        return VideoJobAccepted(
            video_id=video.id,
            job_id=job.id,
            upload_status=UploadStatus.PENDING.value,
            message="Video upload started, poll the status endpoint for progress",
        )

    async def list_videos(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        owner_id: Optional[UUID] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> VideoListResponse:
        videos, total_count = await self.repo.list_active(
            page=page,
            page_size=page_size,
            search=search,
            owner_id=owner_id,
            sort_by=sort_by,
            sort_order=sort_order,
        )

        total_pages = math.ceil(total_count / page_size) if total_count > 0 else 0
        return VideoListResponse(
            videos=[VideoResponse.model_validate(video) for video in videos],
            total_count=total_count,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_more=page < total_pages,
        )

    async def get_video(self, video_id: UUID) -> VideoRecord:
        """
        Get an active video.

        Raises:
            VideoNotFoundError: If missing or soft deleted
        """
        video = await self.repo.get_active(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")
        return video

    async def get_status(self, video_id: UUID) -> VideoStatusResponse:
        """Lifecycle state of a video, soft deleted ones included."""
        video = await self.repo.get(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")

        return VideoStatusResponse(
            video_id=video.id,
            upload_status=video.upload_status,
            job_id=video.job_id,
            error_message=video.error_message,
            retry_count=video.retry_count,
            is_deleted=video.is_deleted,
            video_file=video.video_file,
            thumbnail=video.thumbnail,
            is_processing_complete=video.is_processing_complete,
        )

    async def update_video(
        self,
        video_id: UUID,
        video_data: VideoUpdate,
        video_file: Optional[StagedFile] = None,
        thumbnail: Optional[StagedFile] = None
    ) -> VideoJobAccepted:
        """
        Schedule an update of the provided fields and files.

        Raises:
            VideoNotFoundError: If missing or soft deleted
            VideoStateError: If the upload has not completed or nothing would change
        """
        staged = [video_file, thumbnail]
        try:
            video = await self.get_video(video_id)
            if video.upload_status != UploadStatus.COMPLETED.value:
                raise VideoStateError(
                    f"Video cannot be updated while upload status is {video.upload_status}"
                )
            if not (video_data.title or video_data.description or video_file or thumbnail):
                raise VideoStateError("At least one field must be provided for update")

            job = await self.queue.now(
                JobName.UPDATE_VIDEO.value,
                UpdateVideoJobData(
                    video_id=video_id,
                    title=video_data.title,
                    description=video_data.description,
                    video_file=video_file,
                    thumbnail=thumbnail,
                )
            )
        except Exception:
            await discard_staged(staged)
            raise

        await self.repo.update_fields(video_id, job_id=job.id)
        logger.info(f"Video {video_id}: update scheduled as job {job.id}")

        return VideoJobAccepted(
            video_id=video_id,
            job_id=job.id,
            upload_status=UploadStatus.UPDATING.value,
            message="Video update started, poll the status endpoint for progress",
        )

    async def delete_video(self, video_id: UUID) -> VideoJobAccepted:
        """
        Schedule a soft delete.

        Raises:
            VideoNotFoundError: If the video does not exist
            VideoStateError: If it is already soft deleted
        """
        video = await self.repo.get(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")
        if video.is_deleted:
            raise VideoStateError("Video is already deleted")

        job = await self.queue.now(
            JobName.SOFT_DELETE_VIDEO.value,
            SoftDeleteVideoJobData(video_id=video_id)
        )
        logger.info(f"Video {video_id}: soft delete scheduled as job {job.id}")

        return VideoJobAccepted(
            video_id=video_id,
            job_id=job.id,
            upload_status=UploadStatus.DELETING.value,
            message=f"Video will be deleted, recoverable for {self.settings.recovery_window_days} days",
        )

    async def recover_video(self, video_id: UUID) -> VideoJobAccepted:
        """
        Schedule recovery of a soft deleted video.

        Raises:
            VideoNotFoundError: If the video does not exist
            VideoStateError: If it is not deleted or the window has expired
        """
        video = await self.repo.get(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")
        if not video.is_deleted:
            raise VideoStateError("Video is not deleted")
        if recovery_expired(video.deleted_at, self.settings.recovery_window_days):
            raise VideoStateError("Recovery window has expired")

        job = await self.queue.now(
            JobName.RECOVER_VIDEO.value,
            RecoverVideoJobData(video_id=video_id)
        )
        logger.info(f"Video {video_id}: recovery scheduled as job {job.id}")

        return VideoJobAccepted(
            video_id=video_id,
            job_id=job.id,
            upload_status=UploadStatus.RECOVERING.value,
            message="Video recovery started",
        )

    async def toggle_publish(self, video_id: UUID) -> VideoRecord:
        video = await self.repo.toggle_publish(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")
        logger.info(f"Video {video_id}: is_published set to {video.is_published}")
        return video

    async def cancel_soft_delete(self, video_id: UUID) -> int:
        """
        Cancel soft delete jobs that have not started yet.

        Returns:
            Number of cancelled jobs

        Raises:
            VideoNotFoundError: If the video does not exist
            VideoStateError: If already soft deleted or nothing is pending
        """
        video = await self.repo.get(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")
        if video.is_deleted:
            raise VideoStateError("Video is already deleted, recover it instead")

        cancelled = await self.queue.cancel(
            JobFilter(
                name=JobName.SOFT_DELETE_VIDEO.value,
                video_id=video_id,
                status=JobStatusFilter.SCHEDULED,
            ),
            include_locked=False
        )
        if not cancelled:
            raise VideoStateError("No pending delete job for this video")

        logger.info(f"Video {video_id}: cancelled {cancelled} pending soft delete job(s)")
        return cancelled
