"""Configuration settings for the payment job queue."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # Redis Configuration
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    admin_api_key: Optional[str] = None

    # Worker Configuration
    worker_pool_size: int = 2
    poll_interval_seconds: float = 0.5
    store_error_backoff_seconds: float = 1.0
    queue_gauge_interval_seconds: float = 10.0
    executor: str = "payment_queue.workers.job_executor:echo_executor"

    # Job Configuration
    default_max_attempts: int = 3
    execution_timeout_seconds: float = 120.0
    job_ttl_seconds: int = 7 * 86400  # 7 days
    idempotency_ttl_seconds: int = 86400  # 24 hours

    # Retry Configuration
    retry_backoff_base_seconds: float = 2.0
    retry_backoff_max_seconds: float = 300.0
    retry_backoff_jitter: float = 0.1

    # Queue Configuration
    queue_name: str = "payment_queue"
    dead_letter_queue: str = "payment_dead_letter_queue"
    retry_queue: str = "payment_retry_queue"
    job_key_prefix: str = "payment_job:"
    idempotency_key_prefix: str = "payment:"
    recent_jobs_key: str = "payment_recent_jobs"
    recent_jobs_limit: int = 1000
    dead_letter_max_length: int = 10000

    # Monitoring
    stats_key_prefix: str = "stats:"
    stats_ttl_seconds: int = 30 * 86400  # 30 days
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
