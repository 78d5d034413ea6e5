"""Redis-backed pending queue and job records."""

import time
from typing import Any, List, Optional

import structlog

from payment_queue.config import Settings, settings as default_settings
from payment_queue.exceptions import DuplicateJobError
from payment_queue.models import Job, JobStatus, decode_job, new_job_id
from payment_queue.monitoring.metrics import MetricsCollector, metrics as default_metrics
from payment_queue.store import RedisStore

logger = structlog.get_logger()


class RedisQueue:
    """Pending queue, delayed-retry set and job records on top of a ``RedisStore``."""

    def __init__(
        self,
        store: RedisStore,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.metrics = metrics or default_metrics
        self.queue_name = self.settings.queue_name
        self.dead_letter_queue = self.settings.dead_letter_queue
        self.retry_queue = self.settings.retry_queue

    def job_key(self, job_id: str) -> str:
        return f"{self.settings.job_key_prefix}{job_id}"

    def enqueue(
        self,
        payload: Any,
        job_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Job:
        """
        Create a pending job and push its id onto the pending queue.

        The record, the queue push and the recent-jobs index are written in
        one MULTI/EXEC transaction. Store errors propagate to the caller.
        """
        if job_id is not None and self.store.get(self.job_key(job_id)) is not None:
            raise DuplicateJobError(job_id)

        job = Job(
            id=job_id or new_job_id(),
            payload=payload,
            max_attempts=max_attempts or self.settings.default_max_attempts,
        )

        with self.store.pipeline() as pipe:
            pipe.set(self.job_key(job.id), job.to_json(), ex=self.settings.job_ttl_seconds)
            pipe.lpush(self.queue_name, job.id)
            pipe.lpush(self.settings.recent_jobs_key, job.id)
            pipe.ltrim(self.settings.recent_jobs_key, 0, self.settings.recent_jobs_limit - 1)
            pipe.execute()

        self.metrics.record_job_enqueued()
        logger.info("Job enqueued", job_id=job.id, max_attempts=job.max_attempts)
        return job

    def claim(self) -> Optional[str]:
        """Atomically pop the oldest pending job id; None when the queue is empty."""
        job_id = self.store.list_pop_right(self.queue_name)
        if job_id is not None:
            logger.debug("Job claimed", job_id=job_id)
        return job_id

    def load_job(self, job_id: str) -> Optional[Job]:
        return decode_job(self.store.get(self.job_key(job_id)))

    def save_job(self, job: Job) -> None:
        self.store.set(self.job_key(job.id), job.to_json(), self.settings.job_ttl_seconds)

    def requeue(self, job: Job, delay_seconds: float = 0) -> None:
        """Persist a pending job and put it back on the queue, optionally after a delay."""
        if job.status != JobStatus.PENDING:
            raise ValueError(f"Only pending jobs can be re-queued, got {job.status.value}")

        with self.store.pipeline() as pipe:
            pipe.set(self.job_key(job.id), job.to_json(), ex=self.settings.job_ttl_seconds)
            if delay_seconds > 0:
                pipe.zadd(self.retry_queue, {job.id: time.time() + delay_seconds})
            else:
                # Safe to repeat after a lost reply: the id is never queued twice.
                pipe.lrem(self.queue_name, 0, job.id)
                pipe.lpush(self.queue_name, job.id)
            pipe.execute()

        self.metrics.record_job_retry()
        logger.info(
            "Job scheduled for retry",
            job_id=job.id,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            delay=round(delay_seconds, 3),
        )

    def promote_due_retries(self, now: Optional[float] = None, limit: int = 100) -> List[str]:
        """Move delayed retries whose backoff has elapsed onto the pending queue."""
        promoted = []
        for job_id in self.store.due_members(self.retry_queue, now=now, limit=limit):
            if self.store.move_scheduled(self.retry_queue, job_id, self.queue_name):
                promoted.append(job_id)

        if promoted:
            logger.info("Promoted retry jobs", count=len(promoted))
        return promoted

    def health_check(self) -> bool:
        """Check Redis connection health."""
        return self.store.health_check()
