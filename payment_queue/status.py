"""Read-only queries over the job store and queues for admin tooling."""

from collections import Counter
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from payment_queue.config import Settings, settings as default_settings
from payment_queue.models import Job, decode_job, utcnow
from payment_queue.monitoring.endpoint_stats import stats_key
from payment_queue.store import RedisStore

logger = structlog.get_logger()


class QueueName(str, Enum):
    """Queues whose depth can be inspected."""
    PENDING = "pending"
    DEAD_LETTER = "dead_letter"
    DELAYED = "delayed"


@dataclass
class EndpointStats:
    total: int = 0
    errors: int = 0
    server_errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class StatusReader:
    """Queue depths, job records and counters. Never writes to the store."""

    def __init__(self, store: RedisStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings

    def _list_key(self, queue: QueueName) -> str:
        if queue == QueueName.PENDING:
            return self.settings.queue_name
        if queue == QueueName.DEAD_LETTER:
            return self.settings.dead_letter_queue
        raise ValueError(f"{queue.value} is not a list queue")

    def queue_depth(self, queue: QueueName) -> int:
        """Number of job ids waiting in ``queue``."""
        queue = QueueName(queue)
        if queue == QueueName.DELAYED:
            return self.store.scheduled_count(self.settings.retry_queue)
        return self.store.list_length(self._list_key(queue))

    def queue_overview(self) -> Dict[str, int]:
        return {queue.value: self.queue_depth(queue) for queue in QueueName}

    def job_status(self, job_id: str) -> Optional[Job]:
        return decode_job(self.store.get(f"{self.settings.job_key_prefix}{job_id}"))

    def _load_jobs(self, job_ids: List[str]) -> List[Job]:
        jobs = []
        for job_id in job_ids:
            job = self.job_status(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    def recent_jobs(self, limit: int = 10) -> List[Job]:
        """Most recently created jobs first; expired records are skipped."""
        if limit <= 0:
            return []
        job_ids = self.store.list_range(self.settings.recent_jobs_key, 0, limit - 1)
        return self._load_jobs(job_ids)

    def sample_jobs(self, queue: QueueName, limit: int = 5) -> List[Job]:
        """Records of the first ``limit`` ids held in a list queue."""
        if limit <= 0:
            return []
        job_ids = self.store.list_range(self._list_key(QueueName(queue)), 0, limit - 1)
        return self._load_jobs(job_ids)

    def endpoint_stats(self, endpoint: str) -> EndpointStats:
        prefix = self.settings.stats_key_prefix
        return EndpointStats(
            total=_to_int(self.store.get(stats_key(prefix, endpoint, "total"))),
            errors=_to_int(self.store.get(stats_key(prefix, endpoint, "errors"))),
            server_errors=_to_int(self.store.get(stats_key(prefix, endpoint, "server_errors"))),
        )

    def dead_letter_summary(self) -> Dict[str, Any]:
        """Total dead-lettered jobs, age of the oldest one and counts by status."""
        job_ids = self.store.list_range(self.settings.dead_letter_queue, 0, -1)
        jobs = self._load_jobs(job_ids)

        oldest_age = None
        if jobs:
            oldest = min(job.created_at for job in jobs)
            oldest_age = (utcnow() - oldest).total_seconds()

        return {
            "total_jobs": len(job_ids),
            "oldest_job_age_seconds": oldest_age,
            "jobs_by_status": dict(Counter(job.status.value for job in jobs)),
        }
