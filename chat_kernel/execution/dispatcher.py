"""
Operation Dispatcher — runs parsed operations against entity adapters.

Applies each entity type's ServiceIntegrationConfig: every adapter call is
time-boxed, and failures follow the configured fallback strategy
(retry with exponential backoff, degrade to a locally accepted write, or
fail on the first error).

Behavioral Contract:
- Never executes an operation that still needs disambiguation
- Each adapter call runs on its entity type's own worker pool and is bounded
  by timeout_ms; a hung service can only starve calls of its own type
- A caller can abandon a call through cancel_event; abandoned calls are not
  recorded and their result is flagged cancelled. A call that already
  finished is never reported as cancelled
- Degraded writes are recorded with a single append, or not at all
- Holds no context lock; backoff sleeps block only the calling request
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional
from uuid import uuid4

from chat_kernel.errors.classifier import ErrorClassifier
from chat_kernel.execution.handles import HandleCache
from chat_kernel.metrics.aggregator import MetricsAggregator
from chat_kernel.models.config import (
    ChatEntityConfig,
    FallbackStrategy,
    ServiceIntegrationConfig,
)
from chat_kernel.models.errors import ChatEntityError
from chat_kernel.models.execution import (
    DegradedOperation,
    ExtendedOperationResult,
    OperationResult,
)
from chat_kernel.models.operation import EntityType, ParsedOperation

logger = logging.getLogger(__name__)

# How often a waiting call checks its cancel event
_POLL_SECONDS = 0.05


class ExecutionError(Exception):
    """Raised when an operation must not be dispatched."""
    pass


class _Attempt(NamedTuple):
    result: Optional[OperationResult]
    timed_out: bool = False
    cancelled: bool = False
    reason: str = ""
    retryable: Optional[bool] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.success


class OperationDispatcher:
    """
    Dispatches operations to the adapter registered for their entity type.
    Adapters exposing for_user(user_id) are bound per user and cached.
    """

    def __init__(
        self,
        adapters: Optional[Dict[EntityType, Any]] = None,
        config: Optional[ChatEntityConfig] = None,
        metrics: Optional[MetricsAggregator] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ChatEntityConfig()
        self.metrics = metrics
        self.classifier = classifier or ErrorClassifier()
        self._adapters: Dict[EntityType, Any] = dict(adapters or {})
        self._handles = HandleCache(
            max_size=self.config.execution.handle_cache_size,
            ttl_seconds=self.config.execution.handle_ttl_seconds,
        )
        self._pools: Dict[EntityType, ThreadPoolExecutor] = {}
        self._pools_lock = threading.Lock()
        self._degraded: List[DegradedOperation] = []
        self._degraded_lock = threading.Lock()
        self._sleep = sleep

    def register_adapter(self, entity_type: EntityType, adapter: Any) -> None:
        """Register (or replace) the adapter for an entity type."""
        self._adapters[entity_type] = adapter
        self._handles.invalidate(lambda key: key[1] == entity_type)

    def supports(self, entity_type: EntityType) -> bool:
        return entity_type in self._adapters

    def execute(
        self,
        operation: ParsedOperation,
        user_id: str,
        options: Optional[ServiceIntegrationConfig] = None,
        context_used: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExtendedOperationResult:
        """
        Execute one operation under its entity's integration policy.

        GUARD: Never execute an operation awaiting disambiguation.
        """
        if operation.needs_disambiguation:
            raise ExecutionError(
                f"Cannot execute {operation.label}: it still needs disambiguation."
            )

        operation_id = f"op_{uuid4().hex[:12]}"
        start = time.monotonic()

        adapter = self._resolve_adapter(operation.entity_type, user_id)
        if adapter is None:
            return self._finish(
                operation, operation_id, start, context_used,
                success=False, error=self.classifier.unsupported(operation),
                attempts=0,
            )

        policy = options or self.config.integration_for(operation.entity_type)
        max_attempts = 1
        if policy.fallback_strategy == FallbackStrategy.RETRY:
            max_attempts += policy.max_retries

        attempts = 0
        last: Optional[_Attempt] = None
        while attempts < max_attempts:
            if attempts > 0:
                delay = policy.retry_backoff_ms * 2 ** (attempts - 1) / 1000.0
                if self._backoff(delay, cancel_event):
                    return self._cancelled(operation, operation_id, start, context_used, attempts)
            attempts += 1
            outcome = self._attempt(adapter, operation, policy.timeout_ms, cancel_event)

            if outcome.cancelled:
                return self._cancelled(operation, operation_id, start, context_used, attempts)
            if outcome.succeeded:
                return self._finish(
                    operation, operation_id, start, context_used,
                    success=True, result=outcome.result, attempts=attempts,
                )

            last = outcome
            logger.info(
                "Attempt %d/%d for %s failed: %s",
                attempts, max_attempts, operation.label, outcome.reason,
            )
            if outcome.retryable is False:
                break

        if policy.fallback_strategy == FallbackStrategy.DEGRADE:
            return self._degrade(
                operation, operation_id, user_id, start, context_used, last, attempts
            )

        if last.timed_out:
            error = self.classifier.timeout(operation, policy.timeout_ms, attempts)
        else:
            error = self.classifier.service(operation, last.reason, last.retryable)
        return self._finish(
            operation, operation_id, start, context_used,
            success=False, error=error, attempts=attempts,
        )

    # --- Attempts ---

    def _resolve_adapter(self, entity_type: EntityType, user_id: str) -> Optional[Any]:
        adapter = self._adapters.get(entity_type)
        if adapter is None:
            return None
        if hasattr(adapter, "for_user"):
            return self._handles.get_or_create(
                (user_id, entity_type), lambda: adapter.for_user(user_id)
            )
        return adapter

    def _pool_for(self, entity_type: EntityType) -> ThreadPoolExecutor:
        with self._pools_lock:
            pool = self._pools.get(entity_type)
            if pool is None:
                pool = ThreadPoolExecutor(
                    max_workers=self.config.execution.max_workers,
                    thread_name_prefix=f"chat-{entity_type.value}",
                )
                self._pools[entity_type] = pool
            return pool

    def _invoke(self, adapter: Any, operation: ParsedOperation) -> OperationResult:
        handler = getattr(adapter, "execute", adapter)
        result = handler(operation)
        if isinstance(result, OperationResult):
            return result
        if isinstance(result, dict):
            return OperationResult.model_validate(result)
        return OperationResult(success=True, data=result)

    def _attempt(
        self,
        adapter: Any,
        operation: ParsedOperation,
        timeout_ms: int,
        cancel_event: Optional[threading.Event],
    ) -> _Attempt:
        if cancel_event is not None and cancel_event.is_set():
            return _Attempt(result=None, cancelled=True, reason="cancelled")

        future = self._pool_for(operation.entity_type).submit(
            self._invoke, adapter, operation
        )
        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                # The worker thread cannot be interrupted; its result is discarded
                future.cancel()
                logger.warning(
                    "%s timed out after %d ms", operation.label, timeout_ms
                )
                return _Attempt(
                    result=None, timed_out=True, retryable=True,
                    reason=f"timed out after {timeout_ms} ms",
                )
            done, _ = wait([future], timeout=min(remaining, _POLL_SECONDS))
            if done:
                break
            if cancel_event is not None and cancel_event.is_set():
                if future.done():
                    break
                future.cancel()
                return _Attempt(result=None, cancelled=True, reason="cancelled")

        try:
            result = future.result()
        except Exception as e:
            return _Attempt(result=None, reason=str(e) or type(e).__name__)

        if result.success:
            return _Attempt(result=result)
        return _Attempt(
            result=result,
            reason=result.message or "adapter reported a failure",
            retryable=result.retryable,
        )

    def _backoff(self, delay: float, cancel_event: Optional[threading.Event]) -> bool:
        """Sleep before a retry. Returns True if the caller cancelled meanwhile."""
        if cancel_event is not None:
            return cancel_event.wait(delay)
        self._sleep(delay)
        return False

    # --- Results ---

    def _finish(
        self,
        operation: ParsedOperation,
        operation_id: str,
        start: float,
        context_used: bool,
        success: bool,
        attempts: int,
        result: Optional[OperationResult] = None,
        error: Optional[ChatEntityError] = None,
        data: Any = None,
        degraded: bool = False,
        message: str = "",
    ) -> ExtendedOperationResult:
        elapsed_ms = (time.monotonic() - start) * 1000
        if self.metrics is not None:
            self.metrics.record_execution(elapsed_ms)

        if result is not None:
            data = result.data
            message = result.message
        elif error is not None:
            message = error.message

        if success:
            logger.info("Executed %s in %.1f ms", operation.label, elapsed_ms)
        else:
            logger.info("Failed %s after %d attempt(s): %s", operation.label, attempts, message)

        return ExtendedOperationResult(
            success=success,
            data=data,
            error=error,
            message=message,
            operation_id=operation_id,
            timestamp=datetime.now(timezone.utc),
            execution_time_ms=round(elapsed_ms, 3),
            context_used=context_used,
            confidence_score=operation.confidence,
            alternatives=list(operation.alternatives),
            attempts=attempts,
            degraded=degraded,
        )

    def _degrade(
        self,
        operation: ParsedOperation,
        operation_id: str,
        user_id: str,
        start: float,
        context_used: bool,
        last: _Attempt,
        attempts: int,
    ) -> ExtendedOperationResult:
        entry = DegradedOperation(
            operation_id=operation_id,
            user_id=user_id,
            operation=operation,
            reason=last.reason,
            queued_at=datetime.now(timezone.utc),
        )
        with self._degraded_lock:
            self._degraded.append(entry)
        logger.warning(
            "Degraded %s for user %s: %s", operation.label, user_id, last.reason
        )
        return self._finish(
            operation, operation_id, start, context_used,
            success=True, attempts=attempts, degraded=True,
            data={
                "degraded": True,
                "queued_operation_id": operation_id,
                "reason": last.reason,
            },
            message=f"{operation.label} was accepted locally; the service is unavailable",
        )

    def _cancelled(
        self,
        operation: ParsedOperation,
        operation_id: str,
        start: float,
        context_used: bool,
        attempts: int,
    ) -> ExtendedOperationResult:
        logger.info("%s cancelled by the caller", operation.label)
        error = self.classifier.service(operation, "request cancelled", retryable=True)
        return ExtendedOperationResult(
            success=False,
            error=error,
            message=error.message,
            operation_id=operation_id,
            timestamp=datetime.now(timezone.utc),
            execution_time_ms=round((time.monotonic() - start) * 1000, 3),
            context_used=context_used,
            confidence_score=operation.confidence,
            alternatives=list(operation.alternatives),
            attempts=attempts,
            cancelled=True,
        )

    # --- Maintenance ---

    def degraded_operations(self) -> List[DegradedOperation]:
        with self._degraded_lock:
            return list(self._degraded)

    def clear_handles(self) -> int:
        """Drop cached per-user adapter handles. Returns how many were dropped."""
        dropped = len(self._handles)
        self._handles.clear()
        return dropped

    def cached_handles(self) -> int:
        return len(self._handles)

    def shutdown(self) -> None:
        with self._pools_lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            pool.shutdown(wait=False, cancel_futures=True)
