"""
Video repository for database operations.

Every mutating method is a single-row statement followed by a commit; that
statement is the unit of atomicity for multi-field updates.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import asc, delete, desc, func, not_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.video import UploadStatus, VideoRecord

SORTABLE_FIELDS = ("created_at", "updated_at", "title", "duration", "views")


class VideoRepository:
    """Repository for video database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        title: str,
        description: str,
        owner_id: Optional[UUID] = None,
        upload_status: UploadStatus = UploadStatus.PENDING
    ) -> VideoRecord:
        """
        Create a new video record before any blob is stored.

        Args:
            title: Video title
            description: Video description
            owner_id: Owning user
            upload_status: Initial lifecycle state

        Returns:
            Created video
        """
        video = VideoRecord(
            title=title,
            description=description,
            owner_id=owner_id,
            upload_status=upload_status.value,
            retry_count=0,
        )
        self.db.add(video)
        await self.db.commit()
        await self.db.refresh(video)
        return video

    async def get(self, video_id: UUID) -> Optional[VideoRecord]:
        """Get a video by ID, including soft deleted ones."""
        result = await self.db.execute(
            select(VideoRecord)
            .where(VideoRecord.id == video_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active(self, video_id: UUID) -> Optional[VideoRecord]:
        """Get a video by ID unless it is soft deleted."""
        video = await self.get(video_id)
        if video is None or video.is_deleted:
            return None
        return video

    async def update_fields(self, video_id: UUID, **values: Any) -> bool:
        """
        Apply a partial update to one video.

        Returns:
            True if the video exists
        """
        result = await self.db.execute(
            update(VideoRecord).where(VideoRecord.id == video_id).values(**values)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def list_active(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        owner_id: Optional[UUID] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> Tuple[List[VideoRecord], int]:
        """
        Get paginated videos that are not soft deleted.

        Args:
            page: Page number (1-based)
            page_size: Number of items per page
            search: Optional case-insensitive search on title
            owner_id: Optional owner filter
            sort_by: Field to sort by
            sort_order: Sort order (asc/desc)

        Returns:
            Tuple of (videos list, total count)
        """
        filters = [not_(VideoRecord.is_deleted)]
        if search:
            filters.append(VideoRecord.title.ilike(f"%{search}%"))
        if owner_id:
            filters.append(VideoRecord.owner_id == owner_id)

        count_result = await self.db.execute(select(func.count(VideoRecord.id)).where(*filters))
        total_count = count_result.scalar() or 0

        sort_column = getattr(VideoRecord, sort_by if sort_by in SORTABLE_FIELDS else "created_at")
        ordering = asc(sort_column) if sort_order.lower() == "asc" else desc(sort_column)

        result = await self.db.execute(
            select(VideoRecord)
            .where(*filters)
            .order_by(ordering)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total_count

    async def mark_soft_deleted(
        self,
        video_id: UUID,
        deleted_at: datetime,
        hard_delete_job_id: UUID
    ) -> bool:
        """
        Flag a video as soft deleted unless it already is.

        Returns:
            True if this call performed the transition
        """
        result = await self.db.execute(
            update(VideoRecord)
            .where(VideoRecord.id == video_id, not_(VideoRecord.is_deleted))
            .values(is_deleted=True, deleted_at=deleted_at, hard_delete_job_id=hard_delete_job_id)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def restore(self, video_id: UUID) -> bool:
        """
        Clear the soft delete flags, only if the video is still soft deleted.

        Returns:
            True if this call performed the transition
        """
        result = await self.db.execute(
            update(VideoRecord)
            .where(VideoRecord.id == video_id, VideoRecord.is_deleted)
            .values(is_deleted=False, deleted_at=None, hard_delete_job_id=None)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def delete_if_soft_deleted(self, video_id: UUID, hard_delete_job_id: UUID) -> bool:
        """
        Delete a video only while it is soft deleted and owned by this hard delete job.

        Returns:
            True if the row was deleted
        """
        result = await self.db.execute(
            delete(VideoRecord).where(
                VideoRecord.id == video_id,
                VideoRecord.is_deleted,
                VideoRecord.hard_delete_job_id == hard_delete_job_id,
            )
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def delete(self, video_id: UUID) -> bool:
        """Delete a video unconditionally."""
        result = await self.db.execute(delete(VideoRecord).where(VideoRecord.id == video_id))
        await self.db.commit()
        return bool(result.rowcount)

    async def toggle_publish(self, video_id: UUID) -> Optional[VideoRecord]:
        """
        Flip is_published on an active video.

        Returns:
            Updated video, or None if missing or soft deleted
        """
        result = await self.db.execute(
            update(VideoRecord)
            .where(VideoRecord.id == video_id, not_(VideoRecord.is_deleted))
            .values(is_published=not_(VideoRecord.is_published))
        )
        await self.db.commit()
        if not result.rowcount:
            return None
        return await self.get(video_id)

    async def counts(self) -> Dict[str, int]:
        """Total, active and soft deleted video counts."""
        result = await self.db.execute(
            select(
                func.count(VideoRecord.id).label("total"),
                func.count(VideoRecord.id).filter(VideoRecord.is_deleted).label("soft_deleted"),
            )
        )
        row = result.first()
        total = row.total or 0
        soft_deleted = row.soft_deleted or 0
        return {"total": total, "active": total - soft_deleted, "soft_deleted": soft_deleted}

    async def list_soft_deleted(self) -> List[VideoRecord]:
        """Soft deleted videos, most recently deleted first."""
        result = await self.db.execute(
            select(VideoRecord)
            .where(VideoRecord.is_deleted)
            .order_by(desc(VideoRecord.deleted_at))
        )
        return list(result.scalars().all())
