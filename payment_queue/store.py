"""Redis primitives used as job store, queue lists and idempotency registry."""

import time
from typing import Any, List, Optional

import redis
import structlog

from payment_queue.config import Settings, settings as default_settings

logger = structlog.get_logger()

# Atomic ZREM + LPUSH: only the caller whose ZREM removed the member pushes it.
MOVE_SCHEDULED_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
    redis.call('LPUSH', KEYS[2], ARGV[1])
    return 1
end
return 0
"""


def create_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """Build the Redis client once at process start; callers inject it."""
    settings = settings or default_settings
    if settings.redis_url:
        return redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        decode_responses=True,
    )


class RedisStore:
    """
    Key/value, list and sorted-set operations the queue core relies on.

    Every mutation maps onto a single atomic Redis command (or a MULTI/EXEC
    pipeline), so several workers can share one store without application
    level locking.
    """

    def __init__(self, client: redis.Redis):
        self.client = client
        self._move_scheduled_script = None

    # Key/value

    def get(self, key: str) -> Any:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self.client.set(key, value, ex=ttl_seconds)

    def delete(self, key: str) -> int:
        return self.client.delete(key)

    def conditional_set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Set ``key`` only if it does not exist. Returns True for the caller that created it."""
        return bool(self.client.set(key, value, ex=ttl_seconds, nx=True))

    def increment(self, key: str) -> int:
        return int(self.client.incr(key))

    def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self.client.expire(key, ttl_seconds))

    # Lists

    def list_push_left(self, list_key: str, value: str) -> int:
        return self.client.lpush(list_key, value)

    def list_pop_right(self, list_key: str) -> Optional[str]:
        return self.client.rpop(list_key)

    def list_trim(self, list_key: str, start: int, stop: int) -> None:
        self.client.ltrim(list_key, start, stop)

    def list_range(self, list_key: str, start: int, stop: int) -> List[str]:
        return list(self.client.lrange(list_key, start, stop))

    def list_length(self, list_key: str) -> int:
        return int(self.client.llen(list_key))

    def list_remove(self, list_key: str, value: str, count: int = 0) -> int:
        return int(self.client.lrem(list_key, count, value))

    # Delayed set (member scored by due time)

    def schedule(self, key: str, member: str, due_at: float) -> None:
        self.client.zadd(key, {member: due_at})

    def due_members(self, key: str, now: Optional[float] = None, limit: int = 100) -> List[str]:
        now = time.time() if now is None else now
        return list(self.client.zrangebyscore(key, 0, now, start=0, num=limit))

    def unschedule(self, key: str, member: str) -> bool:
        """Remove ``member``. Only the caller whose ZREM removed it gets True."""
        return self.client.zrem(key, member) == 1

    def scheduled_count(self, key: str) -> int:
        return int(self.client.zcard(key))

    def move_scheduled(self, key: str, member: str, list_key: str) -> bool:
        """
        Move ``member`` from the delayed set onto the left of ``list_key`` in one step.

        Returns True only for the caller that removed it from the set.
        """
        if self._move_scheduled_script is None:
            self._move_scheduled_script = self.client.register_script(MOVE_SCHEDULED_SCRIPT)
        return self._move_scheduled_script(keys=[key, list_key], args=[member]) == 1

    # Misc

    def pipeline(self):
        return self.client.pipeline(transaction=True)

    def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            self.client.ping()
            return True
        except redis.RedisError as e:
            logger.error("Redis health check failed", error=str(e))
            return False
