"""
Dashboard service: job queue inspection and administrative video actions
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import VideoNotFoundError
from app.core.timeutils import as_utc, utcnow
from app.models.job import Job
from app.models.video import VideoRecord
from app.repositories.video_repository import VideoRepository
from app.schemas.job import (
    HardDeleteVideoJobData,
    JobDetail,
    JobFilter,
    JobList,
    JobName,
    JobPagination,
    JobQueueHealth,
    JobStats,
    JobStatusFilter,
    JobSummary,
)
from app.schemas.video import DeletedVideo, DeletedVideoList, ForceDeleteResponse, VideoStats
from app.services.job_queue import JobNotFoundError, JobQueue, derive_status
from app.services.processors import recover_soft_deleted

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def to_job_detail(job: Job) -> JobDetail:
    summary = JobSummary.model_validate(job)
    return JobDetail(**summary.model_dump(), status=derive_status(job), created_at=job.created_at)


class DashboardService:
    """Service behind the job dashboard endpoints."""

    def __init__(self, db: AsyncSession, queue: JobQueue):
        self.db = db
        self.queue = queue
        self.repo = VideoRepository(db)
        self.settings = get_settings()

    # Jobs

    async def job_stats(self) -> JobStats:
        """Job counts per derived status and per job name."""
        counts = {}
        for job_status in (
            JobStatusFilter.RUNNING,
            JobStatusFilter.SCHEDULED,
            JobStatusFilter.COMPLETED,
            JobStatusFilter.FAILED,
        ):
            counts[job_status.value] = await self.queue.count(JobFilter(status=job_status))

        return JobStats(
            total=await self.queue.count(),
            types=await self.queue.count_by_name(),
            **counts
        )

    async def list_jobs(
        self,
        job_status: JobStatusFilter = JobStatusFilter.ALL,
        name: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> JobList:
        """
        Page through jobs.

        One extra row is fetched to tell whether another page exists.
        """
        jobs = await self.queue.jobs(
            JobFilter(status=job_status, name=name),
            limit=limit + 1,
            skip=skip,
        )
        return JobList(
            jobs=[JobSummary.model_validate(job) for job in jobs[:limit]],
            pagination=JobPagination(limit=limit, skip=skip, has_more=len(jobs) > limit),
        )

    async def get_job(self, job_id: UUID) -> JobDetail:
        job = await self.queue.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return to_job_detail(job)

    async def cancel_job(self, job_id: UUID) -> int:
        """
        Remove a job from the queue.

        Raises:
            JobNotFoundError: If no job was removed
        """
        cancelled = await self.queue.cancel(JobFilter(job_id=job_id))
        if not cancelled:
            raise JobNotFoundError(f"Job {job_id} not found")
        return cancelled

    async def retry_job(self, job_id: UUID) -> JobDetail:
        job = await self.queue.retry(job_id)
        return to_job_detail(job)

    async def job_types(self) -> Dict[str, Dict[str, Any]]:
        """Registered job names with their concurrency and stored job counts."""
        counts = await self.queue.count_by_name()
        return {
            name: {"concurrency": definition.concurrency, "count": counts.get(name, 0)}
            for name, definition in self.queue.definitions.items()
        }

    async def health(self) -> JobQueueHealth:
        """Queue health; storage errors are reported, not raised."""
        try:
            total = await self.queue.count()
            running = await self.queue.count(JobFilter(status=JobStatusFilter.RUNNING))
            failed = await self.queue.count(JobFilter(status=JobStatusFilter.FAILED))
        except Exception as e:
            logger.error(f"Job queue health check failed: {e}")
            return JobQueueHealth(
                status="unhealthy",
                connected=False,
                running=self.queue.is_running,
                error=str(e),
            )

        return JobQueueHealth(
            status="healthy" if self.queue.is_running else "stopped",
            connected=True,
            running=self.queue.is_running,
            total_jobs=total,
            running_jobs=running,
            failed_jobs=failed,
        )

    # Videos

    async def video_stats(self) -> VideoStats:
        counts = await self.repo.counts()
        hard_delete_jobs = await self.queue.count(
            JobFilter(name=JobName.HARD_DELETE_VIDEO.value, status=JobStatusFilter.SCHEDULED)
        )
        return VideoStats(
            total_videos=counts["total"],
            active_videos=counts["active"],
            soft_deleted_videos=counts["soft_deleted"],
            hard_delete_jobs=hard_delete_jobs,
            recovery_window_days=self.settings.recovery_window_days,
        )

    async def deleted_videos(self) -> DeletedVideoList:
        """Soft deleted videos with whole days elapsed and days left to recover."""
        now = utcnow()
        window = self.settings.recovery_window_days
        videos = []
        for video in await self.repo.list_soft_deleted():
            deleted_at = as_utc(video.deleted_at)
            days_since = int((now - deleted_at).total_seconds() // SECONDS_PER_DAY) if deleted_at else 0
            days_left = max(0, window - days_since)
            videos.append(DeletedVideo(
                id=video.id,
                title=video.title,
                description=video.description,
                deleted_at=video.deleted_at,
                hard_delete_job_id=video.hard_delete_job_id,
                created_at=video.created_at,
                days_since_deletion=days_since,
                days_left=days_left,
                can_recover=days_left > 0,
            ))
        return DeletedVideoList(videos=videos)

    async def recover_video(self, video_id: UUID) -> VideoRecord:
        """Recover a soft deleted video immediately, under the processor's rules."""
        return await recover_soft_deleted(
            self.repo, self.queue, video_id, self.settings.recovery_window_days
        )

    async def force_delete(self, video_id: UUID) -> ForceDeleteResponse:
        """
        Replace any pending hard delete with one that runs now.

        Raises:
            VideoNotFoundError: If the video does not exist
        """
        video = await self.repo.get(video_id)
        if video is None:
            raise VideoNotFoundError("Video not found")

        if video.hard_delete_job_id is not None:
            try:
                await self.queue.cancel(JobFilter(job_id=video.hard_delete_job_id), include_locked=False)
            except Exception as e:
                logger.warning(
                    f"Video {video_id}: could not cancel hard delete job {video.hard_delete_job_id}: {e}"
                )

        job = await self.queue.now(
            JobName.HARD_DELETE_VIDEO.value,
            HardDeleteVideoJobData(video_id=video_id, forced=True)
        )
        logger.info(f"Video {video_id}: forced hard delete scheduled as job {job.id}")

        return ForceDeleteResponse(video_id=video_id, job_id=job.id, title=video.title)
