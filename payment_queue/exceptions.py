"""Exceptions raised by the queue core and by executors."""

import re
from typing import Optional

MAX_ERROR_LENGTH = 500

# Private keys, raw signatures and other long hex blobs.
_HEX_SECRET = re.compile(r"(0x)?[0-9a-fA-F]{64,}")
_KEYED_SECRET = re.compile(
    r"(?i)\b(private[_ ]?key|secret|mnemonic|seed(?:[_ ]?phrase)?|token|password)"
    r"(\s*[:=]\s*)(\"[^\"]*\"|'[^']*'|\S+)"
)


class PaymentQueueError(Exception):
    """Base exception for the payment queue."""


class JobExecutionError(PaymentQueueError):
    """
    Raised by an executor to report a failed side effect.

    ``retryable`` decides whether the worker re-queues the job or sends it
    straight to the dead-letter queue.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class RetryableJobError(JobExecutionError):
    """Transient failure: timeouts, rate limits, chain congestion."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class FatalJobError(JobExecutionError):
    """Failure that retrying cannot fix: bad payload, invalid address, no funds."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class DuplicateJobError(PaymentQueueError):
    """A job record already exists for a caller-supplied id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} already exists")


class JobNotFoundError(PaymentQueueError):
    """No job record exists for the id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class NotDeadLetteredError(PaymentQueueError):
    """The job exists but is not in the dead-letter queue."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is not in the dead-letter queue")


def sanitize_error(message: Optional[str]) -> Optional[str]:
    """Strip signing material from a failure description before it is persisted."""
    if message is None:
        return None
    cleaned = _KEYED_SECRET.sub(lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]", str(message))
    cleaned = _HEX_SECRET.sub("[REDACTED]", cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) > MAX_ERROR_LENGTH:
        cleaned = cleaned[: MAX_ERROR_LENGTH - 3] + "..."
    return cleaned
