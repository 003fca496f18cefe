"""Per-provider performance metrics."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field

from src.core.error_types import ErrorType

logger = logging.getLogger(__name__)

MAX_SAMPLES = 1000


@dataclass
class ProviderMetrics:
    """Rolling latency/success samples for one provider (last MAX_SAMPLES)."""

    provider_id: str
    total_requests: int = 0
    first_request_at: float | None = None
    last_request_at: float | None = None
    response_times_ms: deque[int] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES))
    successes: deque[bool] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES))
    error_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def add_measurement(
        self, response_time_ms: int, success: bool, error_type: ErrorType | None = None
    ) -> None:
        now = time.time()
        self.total_requests += 1
        self.response_times_ms.append(response_time_ms)
        self.successes.append(success)
        self.last_request_at = now
        if self.first_request_at is None:
            self.first_request_at = now
        if not success and error_type is not None:
            self.error_counts[error_type.value] += 1

    @property
    def average_response_time_ms(self) -> float:
        if not self.response_times_ms:
            return 0.0
        return sum(self.response_times_ms) / len(self.response_times_ms)

    @property
    def success_rate(self) -> float:
        if not self.successes:
            return 1.0
        return sum(1 for s in self.successes if s) / len(self.successes)

    def to_dict(self) -> dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "total_requests": self.total_requests,
            "average_response_time_ms": round(self.average_response_time_ms, 1),
            "success_rate": round(self.success_rate, 4),
            "error_counts": dict(self.error_counts),
            "last_request_at": self.last_request_at,
        }


class MonitoringService:
    """Collects ProviderMetrics for every provider the orchestrator calls."""

    def __init__(self) -> None:
        self._metrics: dict[str, ProviderMetrics] = {}
        self._lock = threading.Lock()

    def record_performance(
        self,
        provider_id: str,
        response_time_ms: int,
        success: bool,
        error_type: ErrorType | None = None,
    ) -> None:
        with self._lock:
            metrics = self._metrics.get(provider_id)
            if metrics is None:
                metrics = self._metrics[provider_id] = ProviderMetrics(provider_id)
            metrics.add_measurement(response_time_ms, success, error_type)

    def get_metrics(self, provider_id: str) -> ProviderMetrics | None:
        return self._metrics.get(provider_id)

    def get_all_metrics(self) -> dict[str, ProviderMetrics]:
        with self._lock:
            return dict(self._metrics)

    def summary(self) -> dict[str, dict[str, object]]:
        return {pid: m.to_dict() for pid, m in self.get_all_metrics().items()}

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
