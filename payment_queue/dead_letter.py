"""Dead-letter routing for exhausted and fatally failed jobs."""

from typing import Optional

import structlog

from payment_queue.config import Settings
from payment_queue.exceptions import JobNotFoundError, NotDeadLetteredError, sanitize_error
from payment_queue.models import Job, JobStatus
from payment_queue.monitoring.metrics import MetricsCollector
from payment_queue.queue import RedisQueue

logger = structlog.get_logger()

UNKNOWN_FAILURE = "Job failed without an error description"


class DeadLetterRouter:
    """Moves jobs into the dead-letter queue and lets operators re-submit them.

    Dead-lettered jobs are never retried automatically.
    """

    def __init__(
        self,
        queue: RedisQueue,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.queue = queue
        self.store = queue.store
        self.settings = settings or queue.settings
        self.metrics = metrics or queue.metrics

    def route(self, job: Job, error: Optional[str], reason: str = "exhausted") -> Job:
        """Mark ``job`` failed and push it onto the dead-letter queue."""
        job.status = JobStatus.FAILED
        job.error = sanitize_error(error) or UNKNOWN_FAILURE

        dead_letter_queue = self.queue.dead_letter_queue
        with self.store.pipeline() as pipe:
            pipe.set(self.queue.job_key(job.id), job.to_json(), ex=self.settings.job_ttl_seconds)
            pipe.lrem(self.queue.queue_name, 0, job.id)
            pipe.zrem(self.queue.retry_queue, job.id)
            pipe.lrem(dead_letter_queue, 0, job.id)
            pipe.lpush(dead_letter_queue, job.id)
            pipe.ltrim(dead_letter_queue, 0, self.settings.dead_letter_max_length - 1)
            pipe.execute()

        self.metrics.record_dead_letter(reason)
        logger.warning(
            "Job moved to dead letter queue",
            job_id=job.id,
            reason=reason,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            error=job.error,
        )
        return job

    def reprocess(self, job_id: str) -> Job:
        """
        Re-submit a dead-lettered job's payload as a new job.

        The failed record is kept for audit; the returned job has a fresh id
        and a full retry budget.
        """
        job = self.queue.load_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        # LREM is the exclusive claim on the dead-letter entry.
        if self.store.list_remove(self.queue.dead_letter_queue, job_id) == 0:
            raise NotDeadLetteredError(job_id)

        try:
            new_job = self.queue.enqueue(job.payload, max_attempts=job.max_attempts)
        except Exception:
            self.store.list_push_left(self.queue.dead_letter_queue, job_id)
            logger.error("Failed to reprocess dead letter job", job_id=job_id)
            raise

        logger.info("Dead letter job reprocessed", job_id=job_id, new_job_id=new_job.id)
        return new_job
