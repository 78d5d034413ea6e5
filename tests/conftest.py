import threading
import time

import pytest
import redis

from payment_queue.config import Settings
from payment_queue.dead_letter import DeadLetterRouter
from payment_queue.idempotency import IdempotencyRegistry
from payment_queue.monitoring.metrics import MetricsCollector
from payment_queue.queue import RedisQueue
from payment_queue.retry import RetryPolicy
from payment_queue.status import StatusReader
from payment_queue.store import MOVE_SCHEDULED_SCRIPT, RedisStore
from payment_queue.workers.job_executor import JobExecutor
from payment_queue.workers.worker_pool import Worker


class InMemoryPipeline:
    """Buffers commands and applies them together on ``execute``."""

    def __init__(self, client):
        self._client = client
        self._commands = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._commands = []
        return False

    def __getattr__(self, name):
        if not hasattr(self._client, name):
            raise AttributeError(name)

        def buffer(*args, **kwargs):
            self._commands.append((name, args, kwargs))
            return self

        return buffer

    def execute(self):
        with self._client._lock:
            results = [getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._commands]
        self._commands = []
        return results


class InMemoryScript:
    """Runs the registered Lua scripts the store uses, as Python, under the client lock."""

    def __init__(self, client, script):
        if script != MOVE_SCHEDULED_SCRIPT:
            raise NotImplementedError("script not emulated")
        self._client = client

    def __call__(self, keys=None, args=None, client=None):
        zset_key, list_key = keys
        member = str(args[0])
        with self._client._lock:
            if self._client.zrem(zset_key, member) == 1:
                self._client.lpush(list_key, member)
                return 1
            return 0


class InMemoryRedis:
    """Subset of the redis-py client (decode_responses=True) used by RedisStore."""

    def __init__(self):
        self._lock = threading.RLock()
        self._strings = {}
        self._lists = {}
        self._zsets = {}
        self._expiry = {}

    def _purge(self, key):
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= time.time():
            for space in (self._strings, self._lists, self._zsets):
                space.pop(key, None)
            self._expiry.pop(key, None)

    def _exists(self, key):
        self._purge(key)
        return key in self._strings or key in self._lists or key in self._zsets

    @staticmethod
    def _slice(items, start, stop):
        length = len(items)
        if start < 0:
            start = max(length + start, 0)
        if stop < 0:
            stop = length + stop
        return items[start:stop + 1]

    def snapshot(self):
        with self._lock:
            return (
                dict(self._strings),
                {k: list(v) for k, v in self._lists.items()},
                {k: dict(v) for k, v in self._zsets.items()},
            )

    # Connection

    def ping(self):
        return True

    def pipeline(self, transaction=True):
        return InMemoryPipeline(self)

    def register_script(self, script):
        return InMemoryScript(self, script)

    # Strings

    def get(self, key):
        with self._lock:
            self._purge(key)
            return self._strings.get(key)

    def set(self, key, value, ex=None, nx=False):
        with self._lock:
            if nx and self._exists(key):
                return None
            self._strings[key] = str(value)
            if ex is not None:
                self._expiry[key] = time.time() + ex
            else:
                self._expiry.pop(key, None)
            return True

    def delete(self, *keys):
        with self._lock:
            removed = 0
            for key in keys:
                if self._exists(key):
                    removed += 1
                for space in (self._strings, self._lists, self._zsets):
                    space.pop(key, None)
                self._expiry.pop(key, None)
            return removed

    def incr(self, key):
        with self._lock:
            self._purge(key)
            value = int(self._strings.get(key, "0")) + 1
            self._strings[key] = str(value)
            return value

    def expire(self, key, seconds):
        with self._lock:
            if not self._exists(key):
                return False
            self._expiry[key] = time.time() + seconds
            return True

    # Lists

    def lpush(self, key, *values):
        with self._lock:
            self._purge(key)
            items = self._lists.setdefault(key, [])
            for value in values:
                items.insert(0, str(value))
            return len(items)

    def rpop(self, key):
        with self._lock:
            self._purge(key)
            items = self._lists.get(key)
            if not items:
                return None
            value = items.pop()
            if not items:
                del self._lists[key]
            return value

    def lrange(self, key, start, stop):
        with self._lock:
            self._purge(key)
            return self._slice(self._lists.get(key, []), start, stop)

    def ltrim(self, key, start, stop):
        with self._lock:
            self._purge(key)
            if key in self._lists:
                self._lists[key] = self._slice(self._lists[key], start, stop)
                if not self._lists[key]:
                    del self._lists[key]
            return True

    def llen(self, key):
        with self._lock:
            self._purge(key)
            return len(self._lists.get(key, []))

    def lrem(self, key, count, value):
        with self._lock:
            self._purge(key)
            items = self._lists.get(key, [])
            kept, removed = [], 0
            for item in items:
                if item == value and (count == 0 or removed < abs(count)):
                    removed += 1
                    continue
                kept.append(item)
            if kept:
                self._lists[key] = kept
            else:
                self._lists.pop(key, None)
            return removed

    # Sorted sets

    def zadd(self, key, mapping):
        with self._lock:
            self._purge(key)
            zset = self._zsets.setdefault(key, {})
            added = sum(1 for member in mapping if member not in zset)
            zset.update({str(m): float(s) for m, s in mapping.items()})
            return added

    def zrangebyscore(self, key, min_score, max_score, start=None, num=None):
        with self._lock:
            self._purge(key)
            zset = self._zsets.get(key, {})
            members = [m for m, s in sorted(zset.items(), key=lambda kv: (kv[1], kv[0]))
                       if float(min_score) <= s <= float(max_score)]
            if start is not None and num is not None:
                members = members[start:start + num]
            return members

    def zrem(self, key, *members):
        with self._lock:
            self._purge(key)
            zset = self._zsets.get(key, {})
            removed = 0
            for member in members:
                if member in zset:
                    del zset[member]
                    removed += 1
            if not zset:
                self._zsets.pop(key, None)
            return removed

    def zcard(self, key):
        with self._lock:
            self._purge(key)
            return len(self._zsets.get(key, {}))


class UnavailableRedis(InMemoryRedis):
    """Every command fails as if the server were unreachable."""

    def __getattribute__(self, name):
        if name.startswith("_") or name in ("snapshot",):
            return object.__getattribute__(self, name)
        raise redis.ConnectionError("Connection refused")


class FlakyWriteRedis(InMemoryRedis):
    """Fails the next ``failing_sets`` SET commands, including ones queued in a pipeline."""

    def __init__(self):
        super().__init__()
        self.failing_sets = 0

    def set(self, key, value, ex=None, nx=False):
        with self._lock:
            if self.failing_sets:
                self.failing_sets -= 1
                raise redis.ConnectionError("Connection reset by peer")
        return super().set(key, value, ex=ex, nx=nx)


@pytest.fixture
def test_settings():
    return Settings(
        retry_backoff_base_seconds=0,
        poll_interval_seconds=0.01,
        store_error_backoff_seconds=0.01,
        queue_gauge_interval_seconds=0.01,
        execution_timeout_seconds=1.0,
        admin_api_key="admin-key",
        executor="payment_queue.workers.job_executor:echo_executor",
    )


@pytest.fixture
def redis_client():
    return InMemoryRedis()


@pytest.fixture
def store(redis_client):
    return RedisStore(redis_client)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def queue(store, test_settings, metrics):
    return RedisQueue(store, test_settings, metrics)


@pytest.fixture
def dead_letters(queue):
    return DeadLetterRouter(queue)


@pytest.fixture
def reader(store, test_settings):
    return StatusReader(store, test_settings)


@pytest.fixture
def registry(store, test_settings):
    return IdempotencyRegistry(store, test_settings)


@pytest.fixture
def make_worker(queue, test_settings):
    def factory(handler, timeout_seconds=1.0, retry_policy=None, worker_id="worker-test"):
        return Worker(
            worker_id,
            queue,
            JobExecutor(handler, timeout_seconds),
            retry_policy=retry_policy or RetryPolicy(base_delay=0),
            settings=test_settings,
        )

    return factory
