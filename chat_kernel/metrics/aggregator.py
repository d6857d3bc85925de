"""
Metrics Aggregator — rolling statistics and derived health.

Behavioral Contract:
- One short-held lock guards every counter; no I/O happens under it
- Averages are rolling over the last window_size samples
- error_rate = 1 - successful/total, 0 when nothing has completed, always in [0, 1]
- Health thresholds come from MonitoringConfig, never constants
- Disambiguation prompts count as messages, not as operations
"""

import threading
from collections import deque
from typing import Deque, List, Optional

from chat_kernel.models.config import MonitoringConfig
from chat_kernel.models.metrics import HealthReport, HealthStatus, PerformanceMetrics


def _mean(samples: Deque[float]) -> float:
    return sum(samples) / len(samples) if samples else 0.0


class MetricsAggregator:

    def __init__(self, config: Optional[MonitoringConfig] = None):
        self.config = config or MonitoringConfig()
        self._lock = threading.Lock()
        self._reset_unlocked()

    def _reset_unlocked(self) -> None:
        window = self.config.window_size
        self._total = 0
        self._successful = 0
        self._messages = 0
        self._disambiguations = 0
        self._parse_times: Deque[float] = deque(maxlen=window)
        self._execution_times: Deque[float] = deque(maxlen=window)
        self._response_times: Deque[float] = deque(maxlen=window)
        self._confidences: Deque[float] = deque(maxlen=window)

    # --- Recording ---

    def record_parse(self, elapsed_ms: float) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._parse_times.append(elapsed_ms)

    def record_execution(self, elapsed_ms: float) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._execution_times.append(elapsed_ms)

    def record_request(
        self,
        success: bool,
        response_ms: float,
        confidence: Optional[float] = None,
    ) -> None:
        """One completed request: executed, or failed with an error."""
        if not self.config.enabled:
            return
        with self._lock:
            self._messages += 1
            self._total += 1
            if success:
                self._successful += 1
            self._response_times.append(response_ms)
            if confidence is not None:
                self._confidences.append(confidence)

    def record_disambiguation(self, response_ms: float) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._messages += 1
            self._disambiguations += 1
            self._response_times.append(response_ms)

    # --- Reading ---

    def snapshot(self) -> PerformanceMetrics:
        with self._lock:
            total = self._total
            error_rate = 1.0 - self._successful / total if total else 0.0
            return PerformanceMetrics(
                total_operations=total,
                successful_operations=self._successful,
                messages_processed=self._messages,
                average_parsing_time=_mean(self._parse_times),
                average_execution_time=_mean(self._execution_times),
                average_response_time=_mean(self._response_times),
                average_confidence=_mean(self._confidences),
                error_rate=min(1.0, max(0.0, error_rate)),
                disambiguation_rate=(
                    self._disambiguations / self._messages if self._messages else 0.0
                ),
            )

    def health(self) -> HealthReport:
        metrics = self.snapshot()
        t = self.config.thresholds
        details = {"metrics": metrics.model_dump(), "reasons": []}

        # No completed operations means no evidence of trouble
        if metrics.total_operations == 0:
            return HealthReport(status=HealthStatus.HEALTHY, details=details)

        unhealthy = self._breaches(
            metrics, t.unhealthy_error_rate, t.unhealthy_confidence, t.unhealthy_response_ms
        )
        if unhealthy:
            details["reasons"] = unhealthy
            return HealthReport(status=HealthStatus.UNHEALTHY, details=details)

        degraded = self._breaches(
            metrics, t.degraded_error_rate, t.degraded_confidence, t.degraded_response_ms
        )
        if degraded:
            details["reasons"] = degraded
            return HealthReport(status=HealthStatus.DEGRADED, details=details)

        return HealthReport(status=HealthStatus.HEALTHY, details=details)

    def _breaches(
        self,
        metrics: PerformanceMetrics,
        max_error_rate: float,
        min_confidence: float,
        max_response_ms: float,
    ) -> List[str]:
        reasons = []
        if metrics.error_rate > max_error_rate:
            reasons.append(f"error rate {metrics.error_rate:.2f} > {max_error_rate}")
        if metrics.average_confidence < min_confidence:
            reasons.append(
                f"average confidence {metrics.average_confidence:.2f} < {min_confidence}"
            )
        if metrics.average_response_time > max_response_ms:
            reasons.append(
                f"average response {metrics.average_response_time:.0f} ms > {max_response_ms} ms"
            )
        return reasons

    # --- Lifecycle ---

    def reset(self) -> None:
        with self._lock:
            self._reset_unlocked()

    def configure(self, config: MonitoringConfig) -> None:
        """Apply new thresholds/window; samples within the new window are kept."""
        with self._lock:
            resize = config.window_size != self.config.window_size
            self.config = config
            if resize:
                for name in ("_parse_times", "_execution_times", "_response_times", "_confidences"):
                    old = getattr(self, name)
                    setattr(self, name, deque(old, maxlen=config.window_size))
