"""
Job model persisted by the job queue
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base


class Job(Base):
    """A unit of scheduled work. Status is derived from the timestamp columns."""

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    data: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict
    )

    # Scheduling and locking
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Failure bookkeeping
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fail_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Unused by the one-shot video jobs
    repeat_interval: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, name='{self.name}', next_run_at='{self.next_run_at}', locked_at='{self.locked_at}')>"

    @property
    def is_running(self) -> bool:
        """Check if a worker currently holds the lock."""
        return self.locked_at is not None

    @property
    def is_failed(self) -> bool:
        """Check if the last run failed."""
        return self.failed_at is not None

    @property
    def is_completed(self) -> bool:
        """Check if the job finished without a recorded failure."""
        return self.last_finished_at is not None and self.failed_at is None
