"""Retry with exponential backoff and circuit-breaker admission.

RetryExecutor is the only place where a single provider is retried. The
orchestrator's fallback walk across providers is a separate dimension.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import TypeVar

import httpx

from src.core.exceptions import CircuitOpenError, ProviderError
from src.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for one provider operation.

    Delay before retry n (1-based) is
    ``min(max_delay_ms, initial_delay_ms * backoff_multiplier ** (n - 1))``
    plus or minus ``jitter_factor`` of that value.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    retry_on_status_codes: tuple[int, ...] = (429, 500, 502, 503, 504)
    retry_on_network_error: bool = True
    retry_on_timeout: bool = True
    retry_on_server_error: bool = True
    retry_on_rate_limit: bool = True


@dataclass(frozen=True)
class RetryAttempt:
    """Details handed to the on_retry callback before each retry."""

    attempt: int
    max_attempts: int
    delay_ms: int
    elapsed_seconds: float
    previous_error: BaseException | None
    is_final_attempt: bool


@dataclass
class RetryStats:
    total_operations: int = 0
    immediate_successes: int = 0
    eventual_successes: int = 0
    total_failures: int = 0
    total_retry_attempts: int = 0
    circuit_breaker_trips: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return (self.immediate_successes + self.eventual_successes) / self.total_operations

    @property
    def average_attempts(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return (self.total_operations + self.total_retry_attempts) / self.total_operations

    def to_dict(self) -> dict[str, float]:
        data: dict[str, float] = asdict(self)
        data["success_rate"] = self.success_rate
        data["average_attempts"] = self.average_attempts
        return data


def _status_code_of(error: BaseException) -> int | None:
    if isinstance(error, ProviderError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


@dataclass
class _ProviderState:
    breaker: CircuitBreaker
    stats: RetryStats = field(default_factory=RetryStats)


class RetryExecutor:
    """Runs provider operations with bounded retries behind a circuit breaker.

    One CircuitBreaker and one RetryStats record are kept per provider id and
    created on first use.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self._clock = clock
        self._rng = rng or random.Random()
        self._providers: dict[str, _ProviderState] = {}
        self._global_stats = RetryStats()

    def get_circuit_breaker(self, provider_id: str) -> CircuitBreaker:
        return self._state_for(provider_id).breaker

    def _state_for(self, provider_id: str) -> _ProviderState:
        state = self._providers.get(provider_id)
        if state is None:
            breaker = CircuitBreaker(provider_id, self.circuit_config, clock=self._clock)
            state = self._providers.setdefault(provider_id, _ProviderState(breaker=breaker))
        return state

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        provider_id: str,
        config: RetryConfig | None = None,
        on_retry: Callable[[RetryAttempt], None] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the retry budget is spent.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            provider_id: Provider whose breaker gates the call.
            config: Overrides the executor's default RetryConfig.
            on_retry: Invoked before each retry with the attempt details.

        Raises:
            CircuitOpenError: If the breaker refuses admission. No attempt is made.
            BaseException: The last error once attempts are exhausted or a
                non-retryable error occurs.
        """
        retry_config = config or self.config
        state = self._state_for(provider_id)
        started = self._clock()

        state.stats.total_operations += 1
        self._global_stats.total_operations += 1

        admission = state.breaker.try_acquire()
        if not admission:
            state.stats.total_failures += 1
            self._global_stats.total_failures += 1
            raise CircuitOpenError(provider_id)

        timeout = self.circuit_config.timeout_ms / 1000
        last_error: BaseException | None = None
        settled = False

        # Any exit that records no outcome, cancellation included, frees the trial slot.
        try:
            for attempt in range(1, retry_config.max_attempts + 1):
                if attempt > 1:
                    delay_ms = self.calculate_delay(attempt - 1, retry_config)
                    if on_retry is not None:
                        on_retry(
                            RetryAttempt(
                                attempt=attempt,
                                max_attempts=retry_config.max_attempts,
                                delay_ms=delay_ms,
                                elapsed_seconds=self._clock() - started,
                                previous_error=last_error,
                                is_final_attempt=attempt == retry_config.max_attempts,
                            )
                        )
                    logger.debug(
                        "Retrying %s operation, attempt %d/%d, delay %dms",
                        provider_id,
                        attempt,
                        retry_config.max_attempts,
                        delay_ms,
                    )
                    await asyncio.sleep(delay_ms / 1000)
                    state.stats.total_retry_attempts += 1
                    self._global_stats.total_retry_attempts += 1

                try:
                    result = await asyncio.wait_for(operation(), timeout=timeout)
                except Exception as error:
                    last_error = error
                    if not self.should_retry(error, attempt, retry_config):
                        logger.debug(
                            "Not retrying %s operation after attempt %d: %s",
                            provider_id,
                            attempt,
                            type(error).__name__,
                        )
                        break
                    logger.debug(
                        "Operation failed for %s, attempt %d: %s", provider_id, attempt, error
                    )
                    continue

                settled = True
                state.breaker.record_success(admission)
                if attempt == 1:
                    state.stats.immediate_successes += 1
                    self._global_stats.immediate_successes += 1
                else:
                    state.stats.eventual_successes += 1
                    self._global_stats.eventual_successes += 1
                logger.debug("Operation succeeded for %s on attempt %d", provider_id, attempt)
                return result

            settled = True
            if state.breaker.record_failure(admission):
                state.stats.circuit_breaker_trips += 1
                self._global_stats.circuit_breaker_trips += 1
        finally:
            if not settled:
                state.breaker.release(admission)

        state.stats.total_failures += 1
        self._global_stats.total_failures += 1

        logger.warning(
            "All retry attempts failed for %s: %s", provider_id, type(last_error).__name__
        )
        if last_error is None:
            raise RuntimeError(f"No attempts were made for {provider_id}")
        raise last_error

    def should_retry(
        self, error: BaseException, attempt: int, config: RetryConfig | None = None
    ) -> bool:
        """Decide whether a failed attempt may be retried on the same provider."""
        config = config or self.config
        if attempt >= config.max_attempts:
            return False

        if isinstance(error, ProviderError) and error.retryable:
            return True
        if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            return config.retry_on_timeout
        if isinstance(error, (httpx.TransportError, ConnectionError)):
            return config.retry_on_network_error

        status_code = _status_code_of(error)
        if status_code is None:
            return False
        if 500 <= status_code < 600 and config.retry_on_server_error:
            return True
        if status_code == 429 and config.retry_on_rate_limit:
            return True
        return status_code in config.retry_on_status_codes

    def calculate_delay(self, attempt_number: int, config: RetryConfig | None = None) -> int:
        """Backoff delay in milliseconds before retry ``attempt_number`` (1-based)."""
        config = config or self.config
        base_delay = config.initial_delay_ms * config.backoff_multiplier ** (attempt_number - 1)
        delay = min(base_delay, float(config.max_delay_ms))
        jitter = delay * config.jitter_factor * (self._rng.random() * 2 - 1)
        return max(0, int(delay + jitter))

    def get_circuit_status(self, provider_id: str) -> CircuitBreakerStatus:
        return self._state_for(provider_id).breaker.status()

    def get_all_circuit_statuses(self) -> dict[str, CircuitBreakerStatus]:
        return {pid: state.breaker.status() for pid, state in self._providers.items()}

    def get_stats(self, provider_id: str | None = None) -> dict[str, float]:
        if provider_id is None:
            return self._global_stats.to_dict()
        return self._state_for(provider_id).stats.to_dict()

    def force_open(self, provider_id: str, reason: str = "manual") -> None:
        self._state_for(provider_id).breaker.force_open(reason)

    def force_close(self, provider_id: str) -> None:
        self._state_for(provider_id).breaker.force_close()

    def reset(self) -> None:
        """Forget every breaker and all statistics."""
        self._providers.clear()
        self._global_stats = RetryStats()
