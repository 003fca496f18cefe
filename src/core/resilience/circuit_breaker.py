"""Per-provider circuit breaker.

State machine:
    closed     -> open       when failures within the rolling window reach failure_threshold
    open       -> half_open  once recovery_timeout_ms has elapsed since opening
    half_open  -> closed     after success_threshold trial successes
    half_open  -> open       on any trial failure (recovery timer restarts)

While open, admission is refused without touching the network. While
half-open, at most half_open_max_calls trial calls may be in flight at once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds and timers for a provider circuit.

    Attributes:
        failure_threshold: Failures within the window that open the circuit
        success_threshold: Trial successes needed to close from half-open
        timeout_ms: Upper bound for a single guarded operation
        recovery_timeout_ms: Time spent open before trial calls are admitted
        failure_window_ms: Rolling window in which failures are counted
        half_open_max_calls: Concurrent trial calls admitted while half-open
    """

    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_ms: int = 30000
    recovery_timeout_ms: int = 60000
    failure_window_ms: int = 300000
    half_open_max_calls: int = 3


@dataclass(frozen=True)
class CircuitBreakerStatus:
    """Point-in-time snapshot of a breaker.

    Timestamps are values of the breaker's clock (monotonic seconds by default).
    """

    provider_id: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: float | None
    opened_at: float | None
    half_opened_at: float | None
    next_retry_at: float | None

    def to_dict(self) -> dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_at": self.last_failure_at,
            "opened_at": self.opened_at,
            "half_opened_at": self.half_opened_at,
            "next_retry_at": self.next_retry_at,
        }


@dataclass(frozen=True)
class Admission:
    """Result of CircuitBreaker.try_acquire; falsy when the call was refused.

    ``trial_period`` is set only when the call reserved a half-open slot. It
    names the half-open period the slot belongs to, so an outcome reported
    after the breaker has moved on never frees somebody else's slot.
    """

    admitted: bool
    trial_period: int | None = None

    def __bool__(self) -> bool:
        return self.admitted

    @property
    def holds_trial_slot(self) -> bool:
        return self.trial_period is not None


_REFUSED = Admission(admitted=False)
_ADMITTED = Admission(admitted=True)


class CircuitBreaker:
    """Failure-isolation state machine for one provider.

    All transitions happen under a lock that is never held across an await,
    so the breaker is safe to share between concurrent callers.
    """

    def __init__(
        self,
        provider_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider_id = provider_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._recent_failures: deque[float] = deque()
        self._success_count = 0
        self._half_open_in_flight = 0
        self._trial_period = 0
        self._last_failure_at: float | None = None
        self._opened_at: float | None = None
        self._half_opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def try_acquire(self) -> Admission:
        """Ask for admission of one call.

        Returns:
            A truthy Admission if the call may proceed. In half-open state the
            admission also holds a trial slot, which is given back by passing
            it to record_success, record_failure or release.
        """
        with self._lock:
            now = self._clock()
            self._refresh(now)

            if self._state is CircuitState.CLOSED:
                return _ADMITTED

            if self._state is CircuitState.OPEN:
                return _REFUSED

            if self._half_open_in_flight >= self.config.half_open_max_calls:
                return _REFUSED
            self._half_open_in_flight += 1
            return Admission(admitted=True, trial_period=self._trial_period)

    def record_success(self, admission: Admission | None = None) -> None:
        """Record a successful call.

        While half-open only a call holding a slot of the current trial period
        counts towards success_threshold.
        """
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                if not self._release_slot(admission):
                    return
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to_closed()
            elif self._state is CircuitState.OPEN:
                # A call admitted before the circuit opened finished fine
                self._transition_to_closed()

    def record_failure(self, admission: Admission | None = None) -> bool:
        """Record a failed call.

        Returns:
            True if this failure opened the circuit.
        """
        with self._lock:
            now = self._clock()
            self._prune_failures(now)
            self._recent_failures.append(now)
            self._last_failure_at = now

            if self._state is CircuitState.CLOSED:
                if len(self._recent_failures) >= self.config.failure_threshold:
                    self._transition_to_open(now)
                    return True
                return False

            if self._state is CircuitState.HALF_OPEN:
                self._release_slot(admission)
                self._transition_to_open(now)
                return True

            return False

    def release(self, admission: Admission) -> None:
        """Give back a trial slot without recording an outcome."""
        with self._lock:
            self._release_slot(admission)

    def force_open(self, reason: str) -> None:
        logger.warning("Manually opening circuit for %s: %s", self.provider_id, reason)
        with self._lock:
            self._transition_to_open(self._clock())

    def force_close(self) -> None:
        logger.info("Manually closing circuit for %s", self.provider_id)
        with self._lock:
            self._transition_to_closed()

    def status(self) -> CircuitBreakerStatus:
        with self._lock:
            now = self._clock()
            self._refresh(now)
            next_retry_at = None
            if self._state is CircuitState.OPEN and self._opened_at is not None:
                next_retry_at = self._opened_at + self.config.recovery_timeout_ms / 1000
            return CircuitBreakerStatus(
                provider_id=self.provider_id,
                state=self._state,
                failure_count=len(self._recent_failures),
                success_count=self._success_count,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                half_opened_at=self._half_opened_at,
                next_retry_at=next_retry_at,
            )

    # Callers must hold self._lock for everything below.

    def _refresh(self, now: float) -> None:
        self._prune_failures(now)
        if self._state is CircuitState.OPEN and self._recovery_elapsed(now):
            self._transition_to_half_open(now)

    def _prune_failures(self, now: float) -> None:
        cutoff = now - self.config.failure_window_ms / 1000
        while self._recent_failures and self._recent_failures[0] < cutoff:
            self._recent_failures.popleft()

    def _recovery_elapsed(self, now: float) -> bool:
        if self._opened_at is None:
            return False
        return (now - self._opened_at) * 1000 >= self.config.recovery_timeout_ms

    def _release_slot(self, admission: Admission | None) -> bool:
        if (
            admission is None
            or admission.trial_period != self._trial_period
            or self._state is not CircuitState.HALF_OPEN
            or self._half_open_in_flight == 0
        ):
            return False
        self._half_open_in_flight -= 1
        return True

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._recent_failures.clear()
        self._success_count = 0
        self._half_open_in_flight = 0
        self._opened_at = None
        self._half_opened_at = None
        logger.info("Circuit closed for %s", self.provider_id)

    def _transition_to_open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._half_opened_at = None
        self._success_count = 0
        self._half_open_in_flight = 0
        logger.warning(
            "Circuit opened for %s (failures: %d)", self.provider_id, len(self._recent_failures)
        )

    def _transition_to_half_open(self, now: float) -> None:
        self._state = CircuitState.HALF_OPEN
        self._trial_period += 1
        self._half_opened_at = now
        self._success_count = 0
        self._half_open_in_flight = 0
        logger.info("Circuit half-open for %s", self.provider_id)
