"""Prometheus metrics collection for the payment job queue."""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Collects and exposes Prometheus metrics for the job queue."""

    def __init__(self):
        """Initialize metrics collector."""
        self.registry = CollectorRegistry()

        # Job metrics
        self.jobs_enqueued = Counter(
            'jobs_enqueued_total',
            'Total number of jobs enqueued',
            registry=self.registry
        )

        self.jobs_completed = Counter(
            'jobs_completed_total',
            'Total number of job executions by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.job_execution_time = Histogram(
            'job_execution_seconds',
            'Job execution time in seconds',
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float('inf')],
            registry=self.registry
        )

        self.job_retries = Counter(
            'job_retries_total',
            'Total number of job retries',
            registry=self.registry
        )

        self.jobs_dead_lettered = Counter(
            'jobs_dead_lettered_total',
            'Total number of jobs moved to the dead letter queue',
            ['reason'],
            registry=self.registry
        )

        # Queue metrics
        self.queue_size = Gauge(
            'queue_size',
            'Current number of jobs in the pending queue',
            registry=self.registry
        )

        self.dead_letter_size = Gauge(
            'dead_letter_queue_size',
            'Current number of jobs in dead letter queue',
            registry=self.registry
        )

        self.delayed_size = Gauge(
            'delayed_retry_size',
            'Current number of jobs waiting out a retry backoff',
            registry=self.registry
        )

        # Worker metrics
        self.active_workers = Gauge(
            'active_workers',
            'Number of active workers',
            registry=self.registry
        )

        self.worker_jobs_processed = Counter(
            'worker_jobs_processed_total',
            'Total jobs processed by workers',
            ['worker_id'],
            registry=self.registry
        )

        # System metrics
        self.system_info = Info(
            'system_info',
            'System information',
            registry=self.registry
        )

        self.system_info.info({
            'version': '1.0.0',
            'component': 'payment_queue'
        })

    def record_job_enqueued(self):
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_job_completed(self, outcome: str, execution_time: float):
        """Record the outcome of one execution attempt."""
        self.jobs_completed.labels(outcome=outcome).inc()
        self.job_execution_time.observe(execution_time)
        logger.debug("Job outcome recorded", outcome=outcome, execution_time=execution_time)

    def record_job_retry(self):
        """Record a job retry."""
        self.job_retries.inc()

    def record_dead_letter(self, reason: str):
        """Record a job moved to the dead letter queue."""
        self.jobs_dead_lettered.labels(reason=reason).inc()

    def update_queue_sizes(self, pending: int, dead_letter: int, delayed: int):
        """Update queue size gauges."""
        self.queue_size.set(pending)
        self.dead_letter_size.set(dead_letter)
        self.delayed_size.set(delayed)

    def update_active_workers(self, count: int):
        """Update active workers count."""
        self.active_workers.set(count)

    def record_worker_job_processed(self, worker_id: str):
        """Record a job processed by a worker."""
        self.worker_jobs_processed.labels(worker_id=worker_id).inc()

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry)


# Global metrics collector instance
metrics = MetricsCollector()
