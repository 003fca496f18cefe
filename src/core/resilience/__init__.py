"""Failure isolation for provider calls.

- CircuitBreaker: per-provider closed/open/half-open state machine
- RetryExecutor: bounded retries with exponential backoff, gated by the breaker
"""

from src.core.resilience.circuit_breaker import (
    Admission,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStatus,
    CircuitState,
)
from src.core.resilience.retry import RetryAttempt, RetryConfig, RetryExecutor, RetryStats

__all__ = [
    "Admission",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStatus",
    "CircuitState",
    "RetryAttempt",
    "RetryConfig",
    "RetryExecutor",
    "RetryStats",
]
