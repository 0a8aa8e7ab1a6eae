"""
Pydantic schemas for job payloads and the job dashboard
"""

import enum
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

from app.schemas.upload import StagedFile


class JobName(str, enum.Enum):
    """Names of the jobs the lifecycle processors handle."""

    PROCESS_VIDEO = "processVideo"
    UPDATE_VIDEO = "updateVideo"
    SOFT_DELETE_VIDEO = "softDeleteVideo"
    HARD_DELETE_VIDEO = "hardDeleteVideo"
    RECOVER_VIDEO = "recoverVideo"
    CLEANUP_FAILED_UPLOAD = "cleanupFailedUpload"


class JobStatusFilter(str, enum.Enum):
    """Job states as derived from the lock and timestamp columns."""

    ALL = "all"
    RUNNING = "running"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    FAILED = "failed"


# Job payloads, discriminated by job_type

class VideoJobData(BaseModel):
    job_type: Literal["processVideo"] = "processVideo"
    video_id: UUID
    video_file: StagedFile
    thumbnail: StagedFile
    title: str
    description: str
    owner_id: Optional[UUID] = None


class UpdateVideoJobData(BaseModel):
    job_type: Literal["updateVideo"] = "updateVideo"
    video_id: UUID
    title: Optional[str] = None
    description: Optional[str] = None
    video_file: Optional[StagedFile] = None
    thumbnail: Optional[StagedFile] = None


class SoftDeleteVideoJobData(BaseModel):
    job_type: Literal["softDeleteVideo"] = "softDeleteVideo"
    video_id: UUID


class HardDeleteVideoJobData(BaseModel):
    job_type: Literal["hardDeleteVideo"] = "hardDeleteVideo"
    video_id: UUID
    # Set by the admin force-delete, which skips the soft delete guard
    forced: bool = False


class RecoverVideoJobData(BaseModel):
    job_type: Literal["recoverVideo"] = "recoverVideo"
    video_id: UUID


class CleanupJobData(BaseModel):
    job_type: Literal["cleanupFailedUpload"] = "cleanupFailedUpload"
    video_id: UUID
    video_public_id: Optional[str] = None
    thumbnail_public_id: Optional[str] = None


JobPayload = Annotated[
    Union[
        VideoJobData,
        UpdateVideoJobData,
        SoftDeleteVideoJobData,
        HardDeleteVideoJobData,
        RecoverVideoJobData,
        CleanupJobData,
    ],
    Field(discriminator="job_type"),
]

job_payload_adapter = TypeAdapter(JobPayload)

KNOWN_JOB_NAMES = frozenset(name.value for name in JobName)


def parse_job_payload(name: str, data: Union[BaseModel, Dict[str, Any]]) -> BaseModel:
    """
    Validate a job payload against the model selected by the job name.

    Args:
        name: Job name, used as the union tag
        data: Payload model or raw mapping read back from the store

    Returns:
        The typed payload model

    Raises:
        ValueError: If the payload does not match the job name
    """
    raw = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
    tag = raw.setdefault("job_type", name)
    if tag != name:
        raise ValueError(f"Payload type '{tag}' does not match job name '{name}'")
    return job_payload_adapter.validate_python(raw)


class JobFilter(BaseModel):
    """Criteria for querying or cancelling persisted jobs."""

    job_id: Optional[UUID] = None
    name: Optional[str] = None
    status: JobStatusFilter = JobStatusFilter.ALL
    video_id: Optional[UUID] = None


class JobSummary(BaseModel):
    """Schema for a job row in dashboard listings."""

    id: UUID
    name: str
    next_run_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    fail_count: int = 0
    fail_reason: Optional[str] = None
    repeat_interval: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class JobDetail(JobSummary):
    """Schema for a single job with derived status."""

    status: JobStatusFilter
    created_at: Optional[datetime] = None


class JobPagination(BaseModel):
    limit: int
    skip: int
    has_more: bool


class JobList(BaseModel):
    """Schema for paginated job listings."""

    jobs: List[JobSummary]
    pagination: JobPagination


class JobStats(BaseModel):
    """Schema for job queue statistics."""

    total: int
    running: int
    scheduled: int
    completed: int
    failed: int
    types: Dict[str, int] = Field(default_factory=dict)


class JobQueueHealth(BaseModel):
    status: str
    connected: bool
    running: bool
    total_jobs: int = 0
    running_jobs: int = 0
    failed_jobs: int = 0
    error: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
