"""
Job dashboard endpoints: queue inspection and administrative video actions
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.videos import lifecycle_http_error
from app.core.dependencies import get_job_queue
from app.core.exceptions import LifecycleError
from app.database import get_db
from app.schemas.job import (
    JobDetail,
    JobList,
    JobQueueHealth,
    JobStats,
    JobStatusFilter,
    MessageResponse,
)
from app.schemas.video import DeletedVideoList, ForceDeleteResponse, VideoResponse, VideoStats
from app.services.dashboard_service import DashboardService
from app.services.job_queue import JobNotFoundError, JobQueue

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dashboard_service(
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue)
) -> DashboardService:
    return DashboardService(db, queue)


def _job_not_found(job_id: UUID) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")


@router.get("/stats", response_model=JobStats)
async def get_job_stats(service: DashboardService = Depends(get_dashboard_service)) -> JobStats:
    """Job counts by status and by type."""
    try:
        return await service.job_stats()
    except Exception as e:
        logger.error(f"Error fetching job stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch job statistics"
        )


@router.get("/jobs", response_model=JobList)
async def list_jobs(
    job_status: JobStatusFilter = Query(JobStatusFilter.ALL, alias="status", description="Derived job status"),
    job_type: Optional[str] = Query(None, alias="type", description="Job name"),
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    skip: int = Query(0, ge=0, description="Jobs to skip"),
    service: DashboardService = Depends(get_dashboard_service)
) -> JobList:
    """
    Get paginated jobs.

    Args:
        job_status: all, running, scheduled, completed or failed
        job_type: Optional job name filter
        limit: Number of jobs per page
        skip: Offset into the result
    """
    return await service.list_jobs(job_status=job_status, name=job_type, limit=limit, skip=skip)


@router.get("/jobs/{job_id}", response_model=JobDetail)
async def get_job(
    job_id: UUID,
    service: DashboardService = Depends(get_dashboard_service)
) -> JobDetail:
    try:
        return await service.get_job(job_id)
    except JobNotFoundError:
        raise _job_not_found(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=MessageResponse)
async def cancel_job(
    job_id: UUID,
    service: DashboardService = Depends(get_dashboard_service)
) -> MessageResponse:
    """Remove a job; a handler already running is not interrupted."""
    try:
        await service.cancel_job(job_id)
    except JobNotFoundError:
        raise _job_not_found(job_id)
    return MessageResponse(message=f"Job {job_id} cancelled")


@router.post("/jobs/{job_id}/retry", response_model=JobDetail)
async def retry_job(
    job_id: UUID,
    service: DashboardService = Depends(get_dashboard_service)
) -> JobDetail:
    """Reset a job's failure state and run it on the next tick."""
    try:
        return await service.retry_job(job_id)
    except JobNotFoundError:
        raise _job_not_found(job_id)


@router.get("/types")
async def get_job_types(service: DashboardService = Depends(get_dashboard_service)) -> Dict[str, Any]:
    return {"types": await service.job_types()}


@router.get("/health", response_model=JobQueueHealth)
async def get_queue_health(service: DashboardService = Depends(get_dashboard_service)) -> JobQueueHealth:
    return await service.health()


@router.get("/videos/stats", response_model=VideoStats)
async def get_video_stats(service: DashboardService = Depends(get_dashboard_service)) -> VideoStats:
    """Video counts including soft deletes and pending hard deletes."""
    try:
        return await service.video_stats()
    except Exception as e:
        logger.error(f"Error fetching video stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch video statistics"
        )


@router.get("/videos/deleted", response_model=DeletedVideoList)
async def get_deleted_videos(service: DashboardService = Depends(get_dashboard_service)) -> DeletedVideoList:
    """Soft deleted videos with days left for recovery."""
    return await service.deleted_videos()


@router.post("/videos/{video_id}/recover", response_model=VideoResponse)
async def recover_video(
    video_id: UUID,
    service: DashboardService = Depends(get_dashboard_service)
) -> VideoResponse:
    """Recover a soft deleted video immediately."""
    try:
        video = await service.recover_video(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
    return VideoResponse.model_validate(video)


@router.post("/videos/{video_id}/force-delete", response_model=ForceDeleteResponse)
async def force_delete_video(
    video_id: UUID,
    service: DashboardService = Depends(get_dashboard_service)
) -> ForceDeleteResponse:
    """Schedule an immediate hard delete, replacing any pending one."""
    try:
        return await service.force_delete(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
