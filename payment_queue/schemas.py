"""Pydantic schemas for API request/response models."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from payment_queue.models import JobStatus


class JobSubmitRequest(BaseModel):
    """Request schema for job submission."""
    payload: Any = Field(..., description="Opaque, JSON-serializable job payload")
    job_id: Optional[str] = Field(default=None, min_length=1, description="Caller-supplied correlation id")
    max_attempts: Optional[int] = Field(default=None, ge=1, description="Maximum number of execution attempts")


class JobSubmitResponse(BaseModel):
    """Response schema for job submission."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")


class JobStatusResponse(BaseModel):
    """Response schema for job status."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    payload: Any = None
    status: JobStatus
    attempts: int
    max_attempts: int = Field(..., alias="maxAttempts")
    created_at: datetime = Field(..., alias="createdAt")
    last_attempt_at: Optional[datetime] = Field(default=None, alias="lastAttemptAt")
    error: Optional[str] = None


class JobListResponse(BaseModel):
    """Response schema for job listing."""
    jobs: List[JobStatusResponse]
    count: int


class QueueStatusResponse(BaseModel):
    """Response schema for queue depths and sampled jobs."""
    pending: int
    dead_letter: int
    delayed: int
    pending_sample: List[JobStatusResponse] = []
    dead_letter_sample: List[JobStatusResponse] = []


class EndpointStatsResponse(BaseModel):
    """Response schema for per-endpoint counters."""
    endpoint: str
    total: int
    errors: int
    server_errors: int


class DeadLetterSummaryResponse(BaseModel):
    """Response schema for dead letter metrics."""
    total_jobs: int
    oldest_job_age_seconds: Optional[float] = None
    jobs_by_status: Dict[str, int]


class ReprocessResponse(BaseModel):
    """Response schema for dead letter reprocessing."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    previous_job_id: str = Field(..., alias="previousJobId")
    job_id: str = Field(..., alias="jobId")


class HealthResponse(BaseModel):
    """Response schema for health check."""
    status: str
    redis_connected: bool
    queue_size: int
    dead_letter_size: int
