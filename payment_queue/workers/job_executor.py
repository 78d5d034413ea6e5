"""Execution wrapper around the pluggable side-effect executor."""

import asyncio
import importlib
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog

from payment_queue.exceptions import JobExecutionError, sanitize_error
from payment_queue.models import ExecutionResult, Job

logger = structlog.get_logger()

ExecutorFunc = Callable[[Any], Union[Awaitable[Any], Any]]


def load_executor(path: str) -> ExecutorFunc:
    """Import an executor from a ``"package.module:attribute"`` path."""
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Executor path must look like 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    executor = getattr(module, attribute)
    if not callable(executor):
        raise TypeError(f"Executor {path!r} is not callable")
    return executor


async def echo_executor(payload: Any) -> ExecutionResult:
    """Execute an echo job (returns the payload)."""
    logger.warning("Echo executor in use; no side effect performed")
    return ExecutionResult.ok({"message": "Echo job completed", "echoed_data": payload})


def _normalize(result: Any) -> ExecutionResult:
    if isinstance(result, ExecutionResult):
        return result
    if isinstance(result, dict) and "success" in result:
        return ExecutionResult.model_validate(result)
    return ExecutionResult.ok(result)


class JobExecutor:
    """Runs the executor for a job with a timeout and classifies the outcome.

    Exceptions never escape: ``JobExecutionError`` carries its own
    ``retryable`` flag, timeouts and any other exception are retryable.
    """

    def __init__(self, handler: ExecutorFunc, timeout_seconds: Optional[float] = None):
        self.handler = handler
        self.timeout_seconds = timeout_seconds

    async def _call(self, payload: Any) -> Any:
        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(payload)
        result = await asyncio.to_thread(self.handler, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def execute(self, job: Job) -> ExecutionResult:
        """Execute one attempt of ``job``."""
        start_time = time.time()
        try:
            raw = await asyncio.wait_for(self._call(job.payload), timeout=self.timeout_seconds)
            result = _normalize(raw)
        except asyncio.TimeoutError:
            result = ExecutionResult.retry(f"Execution timed out after {self.timeout_seconds}s")
        except JobExecutionError as e:
            result = ExecutionResult(success=False, retryable=e.retryable, error=str(e))
        except Exception as e:
            result = ExecutionResult.retry(f"{type(e).__name__}: {e}")

        execution_time_ms = (time.time() - start_time) * 1000
        if result.success:
            logger.info("Job executed successfully",
                        job_id=job.id,
                        execution_time_ms=int(execution_time_ms))
        else:
            result.error = sanitize_error(result.error)
            logger.error("Job execution failed",
                         job_id=job.id,
                         retryable=result.retryable,
                         error=result.error,
                         execution_time_ms=int(execution_time_ms))
        return result

    def describe(self) -> Dict[str, Any]:
        name = getattr(self.handler, "__qualname__", repr(self.handler))
        return {"executor": name, "timeout_seconds": self.timeout_seconds}
