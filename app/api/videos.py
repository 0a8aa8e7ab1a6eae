"""
Video API endpoints for the upload, update and deletion lifecycle
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_job_queue, verify_thumbnail_upload, verify_video_upload
from app.core.exceptions import LifecycleError, VideoNotFoundError
from app.database import get_db
from app.schemas.job import MessageResponse
from app.schemas.upload import StagedFile
from app.schemas.video import (
    DESCRIPTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    VideoCreate,
    VideoJobAccepted,
    VideoListResponse,
    VideoResponse,
    VideoStatusResponse,
    VideoUpdate,
)
from app.services.job_queue import JobQueue
from app.services.staging import discard_staged, stage_upload
from app.services.video_service import VideoService

logger = logging.getLogger(__name__)

router = APIRouter()


def lifecycle_http_error(error: LifecycleError) -> HTTPException:
    """Map a rejected lifecycle operation to its HTTP error."""
    if isinstance(error, VideoNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


def get_video_service(
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue)
) -> VideoService:
    return VideoService(db, queue)


async def _stage_all(files: List[UploadFile]) -> List[StagedFile]:
    staged: List[StagedFile] = []
    try:
        for file in files:
            staged.append(await stage_upload(file))
    except OSError as e:
        await discard_staged(staged)
        logger.error(f"Could not stage upload: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not store the uploaded file"
        )
    return staged


@router.post("", response_model=VideoJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def publish_video(
    title: str = Form(..., min_length=1, max_length=TITLE_MAX_LENGTH),
    description: str = Form(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH),
    owner_id: Optional[UUID] = Form(None),
    video_file: UploadFile = File(..., description="Video file"),
    thumbnail: UploadFile = File(..., description="Thumbnail image"),
    service: VideoService = Depends(get_video_service)
) -> VideoJobAccepted:
    """
    Upload a video and its thumbnail.

    The files are staged and a processVideo job is scheduled; poll
    /status/{video_id} until upload_status is completed or failed.

    Raises:
        HTTPException: On invalid files or if scheduling fails
    """
    verify_video_upload(video_file)
    verify_thumbnail_upload(thumbnail)

    staged_video, staged_thumbnail = await _stage_all([video_file, thumbnail])

    try:
        return await service.publish_video(
            VideoCreate(title=title, description=description, owner_id=owner_id),
            staged_video,
            staged_thumbnail
        )
    except Exception as e:
        logger.error(f"Video upload could not be scheduled: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error starting video upload: {str(e)}"
        )


@router.get("", response_model=VideoListResponse)
async def list_videos(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=50, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in title"),
    owner_id: Optional[UUID] = Query(None, description="Only videos of this owner"),
    sort_by: str = Query("created_at", description="Sort field"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$", description="Sort order"),
    service: VideoService = Depends(get_video_service)
) -> VideoListResponse:
    """
    Get paginated list of videos that are not soft deleted.

    Args:
        page: Page number (1-based)
        page_size: Number of items per page (max 50)
        search: Optional search term for the title
        owner_id: Optional owner filter
        sort_by: Field to sort by (default: created_at)
        sort_order: Sort order (asc/desc, default: desc)
    """
    try:
        return await service.list_videos(
            page=page,
            page_size=page_size,
            search=search,
            owner_id=owner_id,
            sort_by=sort_by,
            sort_order=sort_order
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error fetching videos: {str(e)}"
        )


@router.get("/status/{video_id}", response_model=VideoStatusResponse)
async def get_video_status(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> VideoStatusResponse:
    """Poll the lifecycle state of a video."""
    try:
        return await service.get_status(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> VideoResponse:
    """Get an active video by ID."""
    try:
        video = await service.get_video(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
    return VideoResponse.model_validate(video)


@router.patch("/toggle/publish/{video_id}", response_model=VideoResponse)
async def toggle_publish(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> VideoResponse:
    """Flip the published flag of a video."""
    try:
        video = await service.toggle_publish(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
    return VideoResponse.model_validate(video)


@router.patch("/cancel-delete/{video_id}", response_model=MessageResponse)
async def cancel_delete(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> MessageResponse:
    """Cancel a soft delete that has not started yet."""
    try:
        cancelled = await service.cancel_soft_delete(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
    return MessageResponse(message=f"Cancelled {cancelled} pending delete job(s)")


@router.patch("/{video_id}", response_model=VideoJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def update_video(
    video_id: UUID,
    title: Optional[str] = Form(None, min_length=1, max_length=TITLE_MAX_LENGTH),
    description: Optional[str] = Form(None, min_length=1, max_length=DESCRIPTION_MAX_LENGTH),
    video_file: Optional[UploadFile] = File(None, description="Replacement video"),
    thumbnail: Optional[UploadFile] = File(None, description="Replacement thumbnail"),
    service: VideoService = Depends(get_video_service)
) -> VideoJobAccepted:
    """
    Update a video's fields and files; omitted ones are left unchanged.

    Raises:
        HTTPException: 404 if the video is missing or deleted, 400 if its upload
            has not completed or there is nothing to update
    """
    if video_file is not None:
        verify_video_upload(video_file)
    if thumbnail is not None:
        verify_thumbnail_upload(thumbnail)

    staged = await _stage_all([f for f in (video_file, thumbnail) if f is not None])
    staged_video = staged.pop(0) if video_file is not None else None
    staged_thumbnail = staged.pop(0) if thumbnail is not None else None

    try:
        return await service.update_video(
            video_id,
            VideoUpdate(title=title, description=description),
            staged_video,
            staged_thumbnail
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.delete("/{video_id}", response_model=VideoJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def delete_video(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> VideoJobAccepted:
    """Soft delete a video; it can be recovered during the recovery window."""
    try:
        return await service.delete_video(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.post("/{video_id}/recover", response_model=VideoJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def recover_video(
    video_id: UUID,
    service: VideoService = Depends(get_video_service)
) -> VideoJobAccepted:
    """Schedule recovery of a soft deleted video."""
    try:
        return await service.recover_video(video_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)
