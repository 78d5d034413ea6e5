"""
Idempotency guard for external side effects.

A side effect (an on-chain transfer, a pool supply) runs at most once per
idempotency key, no matter how many times the surrounding job is retried.
Keys are claimed with ``SET NX EX`` before the effect runs.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from payment_queue.config import Settings, settings as default_settings
from payment_queue.models import ExecutionResult, utcnow
from payment_queue.store import RedisStore

logger = structlog.get_logger()

Effect = Callable[[], Union[Awaitable[Any], Any]]


class IdempotencyRegistry:
    """Conditional-set keys guarding at-most-once side effects."""

    def __init__(self, store: RedisStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings
        self.prefix = self.settings.idempotency_key_prefix
        self.ttl_seconds = self.settings.idempotency_ttl_seconds

    def key_for(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def claim(self, key: str, marker: Optional[dict] = None) -> bool:
        """
        Claim ``key`` for the caller.

        Returns:
            True if the caller now owns the side effect, False if it was
            already claimed (the effect must be treated as done).
        """
        value = json.dumps({"claimedAt": utcnow().isoformat(), **(marker or {})}, default=str)
        claimed = self.store.conditional_set(self.key_for(key), value, self.ttl_seconds)
        if not claimed:
            logger.info("Idempotency key already claimed", idempotency_key=key)
        return claimed

    def is_claimed(self, key: str) -> bool:
        return self.store.get(self.key_for(key)) is not None

    def marker(self, key: str) -> Optional[dict]:
        """Return the stored marker for ``key``, or None."""
        raw = self.store.get(self.key_for(key))
        if raw is None:
            return None
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Unreadable idempotency marker", idempotency_key=key)
            return None

    def record(self, key: str, marker: dict) -> None:
        """Overwrite the marker of an owned key, e.g. with the transaction hash."""
        value = json.dumps({"processedAt": utcnow().isoformat(), **marker}, default=str)
        self.store.set(self.key_for(key), value, self.ttl_seconds)

    def release(self, key: str) -> None:
        """Drop a claim. Only for effects known not to have happened."""
        self.store.delete(self.key_for(key))
        logger.info("Idempotency key released", idempotency_key=key)

    def is_recorded(self, key: str) -> bool:
        """True once the outcome of the effect guarded by ``key`` has been recorded."""
        marker = self.marker(key)
        return marker is not None and "processedAt" in marker

    async def run_once(
        self,
        key: str,
        effect: Effect,
        release_on_error: bool = False,
    ) -> ExecutionResult:
        """
        Run ``effect`` only if ``key`` has not been claimed yet.

        A duplicate whose outcome was recorded returns a successful result
        carrying the marker without running the effect. A duplicate holding
        only a bare claim is in doubt (an earlier attempt raised mid-effect)
        and is reported as a fatal failure so an operator can reconcile it.

        An effect that returns a failed ``ExecutionResult`` reports that
        nothing was dispatched, so the claim is released for the next
        attempt. If the effect raises, the claim is kept (the effect may
        have reached the chain) unless ``release_on_error``.
        """
        if not self.claim(key):
            if self.is_recorded(key):
                return ExecutionResult.ok({"duplicate": True, "marker": self.marker(key)})
            logger.error("Side effect state unknown", idempotency_key=key)
            return ExecutionResult.fatal(
                f"Side effect state unknown for idempotency key {key}; reconcile before reprocessing"
            )

        try:
            result = effect()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            if release_on_error:
                self.release(key)
            raise

        if isinstance(result, ExecutionResult):
            if result.success:
                self.record(key, {"result": result.data})
            else:
                self.release(key)
            return result

        self.record(key, {"result": result})
        return ExecutionResult.ok(result)
