"""REST admin API for the payment job queue."""

from typing import Optional

import redis
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Security, status
from fastapi.responses import Response
from fastapi.security.api_key import APIKeyHeader
from prometheus_client import CONTENT_TYPE_LATEST

from payment_queue.config import Settings, settings as default_settings
from payment_queue.dead_letter import DeadLetterRouter
from payment_queue.exceptions import DuplicateJobError, JobNotFoundError, NotDeadLetteredError
from payment_queue.models import Job
from payment_queue.monitoring.endpoint_stats import EndpointStatsRecorder
from payment_queue.monitoring.metrics import MetricsCollector
from payment_queue.queue import RedisQueue
from payment_queue.schemas import (
    DeadLetterSummaryResponse, EndpointStatsResponse, HealthResponse, JobListResponse,
    JobStatusResponse, JobSubmitRequest, JobSubmitResponse, QueueStatusResponse,
    ReprocessResponse,
)
from payment_queue.status import QueueName, StatusReader
from payment_queue.store import RedisStore, create_redis_client

logger = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _job_response(job: Job) -> JobStatusResponse:
    return JobStatusResponse.model_validate(job.to_dict())


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )


def endpoint_label(request: Request) -> str:
    """Route template (``jobs/{job_id}``) of a request, or its raw path when unmatched."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path).lstrip("/")


def get_queue(request: Request) -> RedisQueue:
    return request.app.state.queue


def get_status_reader(request: Request) -> StatusReader:
    return request.app.state.status_reader


def get_dead_letters(request: Request) -> DeadLetterRouter:
    return request.app.state.dead_letters


async def require_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)):
    expected = request.app.state.settings.admin_api_key
    if api_key is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")
    if not expected or api_key != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
    return True


def create_app(settings: Optional[Settings] = None, redis_client=None) -> FastAPI:
    """Build the admin API around one injected Redis client."""
    settings = settings or default_settings
    store = RedisStore(redis_client or create_redis_client(settings))
    metrics = MetricsCollector()
    queue = RedisQueue(store, settings, metrics)

    app = FastAPI(
        title="Payment Job Queue",
        description="Enqueue and status API for the payment-to-blockchain job queue",
        version="1.0.0"
    )
    app.state.settings = settings
    app.state.store = store
    app.state.metrics = metrics
    app.state.queue = queue
    app.state.dead_letters = DeadLetterRouter(queue, settings, metrics)
    app.state.status_reader = StatusReader(store, settings)
    app.state.endpoint_stats = EndpointStatsRecorder(store, settings)

    @app.middleware("http")
    async def record_endpoint_stats(request: Request, call_next):
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            request.app.state.endpoint_stats.record(endpoint_label(request), status_code)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(reader: StatusReader = Depends(get_status_reader)):
        """Health check endpoint."""
        redis_connected = store.health_check()
        if not redis_connected:
            return HealthResponse(status="unhealthy", redis_connected=False,
                                  queue_size=0, dead_letter_size=0)
        try:
            return HealthResponse(
                status="healthy",
                redis_connected=True,
                queue_size=reader.queue_depth(QueueName.PENDING),
                dead_letter_size=reader.queue_depth(QueueName.DEAD_LETTER),
            )
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service unhealthy"
            )

    @app.post("/jobs", response_model=JobSubmitResponse)
    async def submit_job(job_request: JobSubmitRequest, queue: RedisQueue = Depends(get_queue)):
        """Enqueue a new job."""
        try:
            job = queue.enqueue(
                job_request.payload,
                job_id=job_request.job_id,
                max_attempts=job_request.max_attempts,
            )
            return JobSubmitResponse(job_id=job.id)

        except DuplicateJobError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except redis.RedisError as e:
            logger.error("Failed to enqueue job", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Failed to enqueue job"
            )
        except Exception as e:
            logger.error("Failed to submit job", error=str(e))
            raise _internal_error()

    @app.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
    async def get_job_status(job_id: str, reader: StatusReader = Depends(get_status_reader)):
        """Get job status by ID."""
        try:
            job = reader.job_status(job_id)
            if job is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Job not found"
                )
            return _job_response(job)

        except HTTPException:
            raise
        except Exception as e:
            logger.error("Failed to get job status", job_id=job_id, error=str(e))
            raise _internal_error()

    @app.get("/jobs", response_model=JobListResponse, response_model_exclude_none=True)
    async def list_recent_jobs(limit: int = 10, reader: StatusReader = Depends(get_status_reader)):
        """List the most recently created jobs."""
        try:
            jobs = reader.recent_jobs(max(0, min(limit, settings.recent_jobs_limit)))
            return JobListResponse(jobs=[_job_response(job) for job in jobs], count=len(jobs))

        except Exception as e:
            logger.error("Failed to list jobs", error=str(e))
            raise _internal_error()

    @app.get("/queues", response_model=QueueStatusResponse, response_model_exclude_none=True)
    async def queue_status(sample: int = 5, reader: StatusReader = Depends(get_status_reader)):
        """Queue depths plus the first ``sample`` records of each list."""
        sample = max(0, min(sample, 100))
        try:
            overview = reader.queue_overview()
            return QueueStatusResponse(
                pending=overview["pending"],
                dead_letter=overview["dead_letter"],
                delayed=overview["delayed"],
                pending_sample=[_job_response(j) for j in reader.sample_jobs(QueueName.PENDING, sample)],
                dead_letter_sample=[_job_response(j) for j in reader.sample_jobs(QueueName.DEAD_LETTER, sample)],
            )

        except Exception as e:
            logger.error("Failed to get queue status", error=str(e))
            raise _internal_error()

    @app.get("/stats/{endpoint:path}", response_model=EndpointStatsResponse)
    async def endpoint_stats(endpoint: str, reader: StatusReader = Depends(get_status_reader)):
        """Aggregate request counters for an endpoint (``jobs/{job_id}``) or category label."""
        try:
            stats = reader.endpoint_stats(endpoint)
            return EndpointStatsResponse(endpoint=endpoint, **stats.to_dict())

        except Exception as e:
            logger.error("Failed to get stats", endpoint=endpoint, error=str(e))
            raise _internal_error()

    @app.get("/dead-letter", response_model=JobListResponse, response_model_exclude_none=True)
    async def list_dead_letter_jobs(limit: int = 50, reader: StatusReader = Depends(get_status_reader)):
        """List dead letter jobs, most recently failed first."""
        try:
            jobs = reader.sample_jobs(QueueName.DEAD_LETTER, max(0, min(limit, 1000)))
            return JobListResponse(jobs=[_job_response(job) for job in jobs], count=len(jobs))

        except Exception as e:
            logger.error("Failed to list dead letter jobs", error=str(e))
            raise _internal_error()

    @app.get("/dead-letter/summary", response_model=DeadLetterSummaryResponse)
    async def dead_letter_summary(reader: StatusReader = Depends(get_status_reader)):
        """Dead letter queue metrics."""
        try:
            return DeadLetterSummaryResponse(**reader.dead_letter_summary())

        except Exception as e:
            logger.error("Failed to get dead letter summary", error=str(e))
            raise _internal_error()

    @app.post("/dead-letter/{job_id}/reprocess", response_model=ReprocessResponse)
    async def reprocess_dead_letter_job(
        job_id: str,
        dead_letters: DeadLetterRouter = Depends(get_dead_letters),
        authorized: bool = Depends(require_api_key),
    ):
        """Re-submit a dead letter job's payload as a new job."""
        try:
            new_job = dead_letters.reprocess(job_id)
            return ReprocessResponse(success=True, previous_job_id=job_id, job_id=new_job.id)

        except JobNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except NotDeadLetteredError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except Exception as e:
            logger.error("Failed to reprocess dead letter job", job_id=job_id, error=str(e))
            raise _internal_error()

    @app.get("/metrics")
    async def get_metrics():
        """Prometheus metrics endpoint."""
        return Response(metrics.get_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


if __name__ == "__main__":
    import uvicorn
    from payment_queue.main import configure_logging

    configure_logging(default_settings.log_level)
    uvicorn.run(create_app(), host=default_settings.api_host, port=default_settings.api_port)
