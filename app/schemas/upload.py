"""
Pydantic schemas for staged uploads and service health
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field


class StagedFile(BaseModel):
    """An uploaded file written to the staging directory, waiting for a processor."""

    path: str = Field(..., description="Absolute path of the staged copy")
    filename: str = Field(..., description="Original filename from the upload")
    content_type: str = Field("application/octet-stream", description="MIME type reported by the client")
    size: int = Field(..., ge=0, description="File size in bytes")

    @property
    def extension(self) -> str:
        """Lower-case file extension without the dot, or an empty string."""
        return Path(self.filename).suffix.lstrip(".").lower()


class HealthCheck(BaseModel):
    """Schema for health check response."""

    status: str = "healthy"
    timestamp: datetime
    version: str = "1.0.0"
    database_connected: bool = True
    upload_directory_accessible: bool = True
    job_queue_running: bool = False
