"""
Video model tracking the upload and deletion lifecycle of one video
"""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base


class UploadStatus(str, enum.Enum):
    """Upload lifecycle states of a video record."""

    PENDING = "pending"
    PROCESSING = "processing"
    UPDATING = "updating"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETING = "deleting"
    RECOVERING = "recovering"


class VideoRecord(Base):
    """Video record owned by the lifecycle processors."""

    __tablename__ = "videos"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        index=True
    )

    # Content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    owner_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)

    # Stored blobs
    video_file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    video_file_public_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    thumbnail_public_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Upload lifecycle
    upload_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UploadStatus.PENDING.value,
        index=True
    )
    job_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    hard_delete_job_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<VideoRecord(id={self.id}, title='{self.title}', upload_status='{self.upload_status}')>"

    @property
    def video_file(self) -> Optional[dict]:
        """Stored video blob as {url, public_id}."""
        if not self.video_file_public_id:
            return None
        return {"url": self.video_file_url, "public_id": self.video_file_public_id}

    @property
    def thumbnail(self) -> Optional[dict]:
        """Stored thumbnail blob as {url, public_id}."""
        if not self.thumbnail_public_id:
            return None
        return {"url": self.thumbnail_url, "public_id": self.thumbnail_public_id}

    @property
    def is_processing_complete(self) -> bool:
        """Check if the last upload or update reached a terminal state."""
        return self.upload_status in (UploadStatus.COMPLETED.value, UploadStatus.FAILED.value)
