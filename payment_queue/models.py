"""Job envelope and execution result models."""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = structlog.get_logger()


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class Job(BaseModel):
    """
    Persisted record describing one unit of queued work.

    Serialized with camelCase keys (``maxAttempts``, ``createdAt``,
    ``lastAttemptAt``); optional fields are omitted while unset.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(min_length=1)
    payload: Any = None
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1, alias="maxAttempts")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_attempt_at: Optional[datetime] = Field(default=None, alias="lastAttemptAt")
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_attempt_budget(self):
        if self.attempts > self.max_attempts:
            raise ValueError(
                f"attempts ({self.attempts}) exceeds maxAttempts ({self.max_attempts})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to its wire dictionary."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def decode_job(raw: Any) -> Optional[Job]:
    """
    Normalize a stored job value into a ``Job``.

    Redis clients hand back either an encoded string (or bytes) or an
    already-decoded structure. Null, unparseable and invalid values are
    logged and returned as ``None`` so callers can skip them.
    """
    if raw is None:
        return None
    if isinstance(raw, Job):
        return raw
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            data = json.loads(raw)
        elif isinstance(raw, dict):
            data = raw
        else:
            logger.warning("Unsupported job record type", value_type=type(raw).__name__)
            return None
        return Job.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Failed to decode job record", error=str(e))
        return None


class ExecutionResult(BaseModel):
    """Outcome reported by an executor for one execution attempt."""

    success: bool
    data: Any = None
    retryable: bool = True
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ExecutionResult":
        return cls(success=True, data=data)

    @classmethod
    def retry(cls, error: str) -> "ExecutionResult":
        return cls(success=False, retryable=True, error=error)

    @classmethod
    def fatal(cls, error: str) -> "ExecutionResult":
        return cls(success=False, retryable=False, error=error)
