"""Per-endpoint request counters kept in Redis for admin tooling."""

from typing import Optional

import redis
import structlog

from payment_queue.config import Settings, settings as default_settings
from payment_queue.store import RedisStore

logger = structlog.get_logger()

COUNTER_KINDS = ("total", "errors", "server_errors")


def stats_key(prefix: str, endpoint: str, kind: str) -> str:
    return f"{prefix}{endpoint}:{kind}"


class EndpointStatsRecorder:
    """Increments total/errors/server_errors counters for an endpoint or category."""

    def __init__(self, store: RedisStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings

    def record(self, endpoint: str, status_code: int) -> None:
        """Count one request. Monitoring failures are logged, never raised."""
        kinds = ["total"]
        if status_code >= 400:
            kinds.append("errors")
        if status_code >= 500:
            kinds.append("server_errors")

        try:
            for kind in kinds:
                key = stats_key(self.settings.stats_key_prefix, endpoint, kind)
                self.store.increment(key)
                self.store.expire(key, self.settings.stats_ttl_seconds)
        except redis.RedisError as e:
            logger.error("Failed to record endpoint stats", endpoint=endpoint, error=str(e))
