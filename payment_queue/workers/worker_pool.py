"""Worker pool that drains the payment queue."""

import asyncio
import signal
import time
import uuid
from typing import List, Optional

import redis
import structlog

from payment_queue.config import Settings, settings as default_settings
from payment_queue.dead_letter import DeadLetterRouter
from payment_queue.models import ExecutionResult, Job, JobStatus, utcnow
from payment_queue.monitoring.metrics import MetricsCollector
from payment_queue.queue import RedisQueue
from payment_queue.retry import RetryPolicy
from payment_queue.status import StatusReader
from payment_queue.store import RedisStore, create_redis_client
from .job_executor import JobExecutor, load_executor

logger = structlog.get_logger()


class Worker:
    """Individual worker that processes jobs from the queue, one at a time."""

    def __init__(
        self,
        worker_id: str,
        queue: RedisQueue,
        executor: JobExecutor,
        dead_letters: Optional[DeadLetterRouter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Initialize worker."""
        self.worker_id = worker_id
        self.queue = queue
        self.executor = executor
        self.settings = settings or queue.settings
        self.metrics = metrics or queue.metrics
        self.dead_letters = dead_letters or DeadLetterRouter(queue, self.settings, self.metrics)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.running = False
        self.current_job: Optional[Job] = None

    async def start(self):
        """Run the worker loop until ``stop`` is called."""
        self.running = True
        logger.info("Worker started", worker_id=self.worker_id, **self.executor.describe())

        while self.running:
            try:
                claimed = await self.run_once()
                if claimed is None:
                    # No jobs available
                    await asyncio.sleep(self.settings.poll_interval_seconds)
            except Exception as e:
                logger.error("Worker error", worker_id=self.worker_id, error=str(e))
                await asyncio.sleep(self.settings.store_error_backoff_seconds)

        logger.info("Worker loop exited", worker_id=self.worker_id)

    async def stop(self):
        """Stop the worker after the current job."""
        self.running = False
        logger.info("Worker stopped", worker_id=self.worker_id)

    async def run_once(self) -> Optional[str]:
        """
        Claim and process at most one job.

        Returns the claimed job id, or None when the queue was empty.
        """
        self.queue.promote_due_retries()
        job_id = self.queue.claim()
        if job_id is None:
            return None
        await self._process_job(job_id)
        return job_id

    async def _process_job(self, job_id: str):
        """Process a single job."""
        job = await self._retry_store(lambda: self.queue.load_job(job_id), "load", job_id)
        if job is None:
            logger.warning("Discarding job with missing or unreadable record",
                           worker_id=self.worker_id, job_id=job_id)
            return

        if job.is_terminal:
            logger.warning("Discarding job already in a terminal state",
                           worker_id=self.worker_id, job_id=job_id, status=job.status.value)
            return

        if job.attempts_exhausted:
            await self._retry_store(
                lambda: self.dead_letters.route(job, job.error or "Retry budget exhausted", reason="exhausted"),
                "route_exhausted", job_id)
            return

        logger.info("Processing job", worker_id=self.worker_id, job_id=job_id,
                    attempt=job.attempts + 1, max_attempts=job.max_attempts)

        job.status = JobStatus.PROCESSING
        await self._retry_store(lambda: self.queue.save_job(job), "mark_processing", job_id)
        self.current_job = job

        try:
            start_time = time.time()
            result = await self.executor.execute(job)
            execution_time = time.time() - start_time

            job.attempts += 1
            job.last_attempt_at = utcnow()
            await self._retry_store(lambda: self._resolve(job, result), "write_outcome", job_id)

            self.metrics.record_job_completed(self._outcome(job, result), execution_time)
            self.metrics.record_worker_job_processed(self.worker_id)
        finally:
            self.current_job = None

    async def _retry_store(self, operation, description: str, job_id: str):
        """
        Run a store operation for a claimed job until it succeeds.

        The job is already off the pending queue, so giving up here would leave it
        stranded. Every operation passed in is safe to repeat.
        """
        while True:
            try:
                return operation()
            except redis.RedisError as e:
                logger.error("Store error on claimed job, retrying", worker_id=self.worker_id,
                             job_id=job_id, operation=description, error=str(e))
                await asyncio.sleep(self.settings.store_error_backoff_seconds)

    def _resolve(self, job: Job, result: ExecutionResult):
        if result.success:
            job.status = JobStatus.COMPLETED
            job.error = None
            self.queue.save_job(job)
            logger.info("Job completed successfully",
                        worker_id=self.worker_id, job_id=job.id, attempts=job.attempts)
        elif not result.retryable:
            self.dead_letters.route(job, result.error, reason="fatal")
        elif job.attempts < job.max_attempts:
            job.status = JobStatus.PENDING
            job.error = None
            self.queue.requeue(job, self.retry_policy.delay_for(job.attempts))
        else:
            self.dead_letters.route(job, result.error, reason="exhausted")

    @staticmethod
    def _outcome(job: Job, result: ExecutionResult) -> str:
        if result.success:
            return "completed"
        if job.status == JobStatus.FAILED:
            return "dead_lettered"
        return "retrying"


class WorkerPool:
    """Pool of workers for concurrent job processing."""

    def __init__(
        self,
        queue: RedisQueue,
        executor: JobExecutor,
        pool_size: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize worker pool."""
        self.queue = queue
        self.executor = executor
        self.settings = settings or queue.settings
        self.pool_size = pool_size or self.settings.worker_pool_size
        self.metrics = queue.metrics
        self.status = StatusReader(queue.store, self.settings)
        self.workers: List[Worker] = []
        self.running = False

    async def start(self):
        """Start the worker pool."""
        self.running = True
        logger.info("Starting worker pool", pool_size=self.pool_size)

        for _ in range(self.pool_size):
            worker_id = f"worker-{uuid.uuid4().hex[:8]}"
            self.workers.append(Worker(worker_id, self.queue, self.executor, settings=self.settings))
        self.metrics.update_active_workers(len(self.workers))

        tasks = [worker.start() for worker in self.workers]
        gauge_task = asyncio.create_task(self._report_queue_sizes())

        try:
            await asyncio.gather(*tasks, gauge_task)
        except asyncio.CancelledError:
            logger.info("Worker pool tasks cancelled")

    async def stop(self):
        """Stop the worker pool gracefully."""
        self.running = False
        logger.info("Stopping worker pool")

        for worker in self.workers:
            await worker.stop()
        self.metrics.update_active_workers(0)

        logger.info("Worker pool stopped")

    async def _report_queue_sizes(self):
        """Refresh the queue gauges periodically."""
        while self.running:
            try:
                overview = self.status.queue_overview()
                self.metrics.update_queue_sizes(
                    pending=overview["pending"],
                    dead_letter=overview["dead_letter"],
                    delayed=overview["delayed"],
                )
            except Exception as e:
                logger.error("Error reporting queue sizes", error=str(e))
            await asyncio.sleep(self.settings.queue_gauge_interval_seconds)


def build_pool(settings: Optional[Settings] = None, redis_client=None) -> WorkerPool:
    """Wire a worker pool from settings: one Redis client, one executor."""
    settings = settings or default_settings
    store = RedisStore(redis_client or create_redis_client(settings))
    queue = RedisQueue(store, settings)
    executor = JobExecutor(load_executor(settings.executor), settings.execution_timeout_seconds)
    return WorkerPool(queue, executor, settings=settings)


async def main(settings: Optional[Settings] = None):
    """Main function to run the worker pool."""
    from payment_queue.main import configure_logging

    settings = settings or default_settings
    configure_logging(settings.log_level)

    pool = build_pool(settings)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            signum, lambda signum=signum: asyncio.create_task(_shutdown(pool, signum))
        )

    try:
        await pool.start()
    finally:
        await pool.stop()


async def _shutdown(pool: WorkerPool, signum: int):
    logger.info("Received shutdown signal", signal=signum)
    await pool.stop()


if __name__ == "__main__":
    asyncio.run(main())
