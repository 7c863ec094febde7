"""
Circuit breaker for per-provider health tracking.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, attempts pass through
- Open: Circuit tripped, attempts are denied until the cooldown elapses
- Half-Open: Cooldown elapsed, a single trial attempt is allowed
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("resilient_relay.resilience.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that trip the circuit
        cooldown_seconds: Time the circuit stays open before a trial is allowed
    """

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if self.cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        return cls(
            failure_threshold=int(os.getenv("RELAY_BREAKER_FAILURE_THRESHOLD", "5")),
            cooldown_seconds=float(os.getenv("RELAY_BREAKER_COOLDOWN_SECS", "60")),
        )


@dataclass
class CircuitStats:
    """Statistics for circuit breaker."""

    total_checks: int = 0
    rejected_checks: int = 0
    successes: int = 0
    failures: int = 0
    state_changes: int = 0


class CircuitBreaker:
    """Circuit breaker for one provider.

    The breaker does not wrap calls itself; the caller asks
    ``can_execute()`` before attempting the provider and reports the
    outcome with ``on_success()`` or ``on_failure()``. Counters are
    guarded by a lock so the breaker can be shared between threads.

    Example:
        >>> breaker = CircuitBreaker("google", CircuitBreakerConfig(failure_threshold=3))
        >>> if breaker.can_execute():
        ...     try:
        ...         result = await call()
        ...     except ProviderError:
        ...         breaker.on_failure()
        ...     else:
        ...         breaker.on_success()
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Provider identifier this breaker guards
            config: Circuit breaker configuration
            clock: Monotonic time source in seconds
        """
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

        self._stats = CircuitStats()

    @property
    def name(self) -> str:
        """Provider identifier."""
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        """Breaker configuration."""
        return self._config

    @property
    def state(self) -> CircuitState:
        """Get current circuit state (no transition side effects)."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        """Failures since the last success."""
        return self._consecutive_failures

    @property
    def last_failure_at(self) -> float | None:
        """Clock reading of the most recent failure."""
        return self._last_failure_at

    def can_execute(self) -> bool:
        """Check whether the provider may be attempted now.

        An open circuit whose cooldown has elapsed moves to half-open and
        grants exactly one trial. Further checks are denied until that
        trial reports its outcome.

        Returns:
            True if the caller may attempt the provider
        """
        with self._lock:
            self._stats.total_checks += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_at or 0.0)
                if elapsed > self._config.cooldown_seconds:
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._trial_in_flight = True
                    return True
                self._stats.rejected_checks += 1
                return False

            # Half-open: one trial at a time
            if self._trial_in_flight:
                self._stats.rejected_checks += 1
                return False
            self._trial_in_flight = True
            return True

    def on_success(self) -> None:
        """Record a successful attempt."""
        with self._lock:
            self._stats.successes += 1
            self._consecutive_failures = 0
            self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)

    def on_failure(self) -> None:
        """Record a failed attempt."""
        with self._lock:
            self._stats.failures += 1
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def release(self) -> None:
        """Give back a half-open trial that ended without an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit opened",
                provider=self._name,
                failures=self._consecutive_failures,
                cooldown_seconds=self._config.cooldown_seconds,
            )
        elif new_state == CircuitState.CLOSED:
            logger.info("Circuit closed", provider=self._name, previous=old_state.value)
        else:
            logger.info("Circuit half-open, allowing trial", provider=self._name)

    def get_time_until_retry(self) -> float | None:
        """Get time until an open circuit allows a trial.

        Returns:
            Seconds until retry, or None if not open
        """
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return None

        remaining = self._config.cooldown_seconds - (self._clock() - self._last_failure_at)
        return max(0.0, remaining)

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_at = None
            self._trial_in_flight = False

    def reconfigure(self, config: CircuitBreakerConfig) -> bool:
        """Swap in new settings if the breaker has not been used yet.

        Returns:
            True if the settings were applied
        """
        with self._lock:
            stats = self._stats
            if stats.total_checks or stats.successes or stats.failures:
                return False
            self._config = config
            return True

    def get_stats(self) -> CircuitStats:
        """Get a copy of circuit breaker statistics."""
        return CircuitStats(
            total_checks=self._stats.total_checks,
            rejected_checks=self._stats.rejected_checks,
            successes=self._stats.successes,
            failures=self._stats.failures,
            state_changes=self._stats.state_changes,
        )

    def snapshot(self) -> dict[str, Any]:
        """Diagnostic view of the breaker."""
        return {
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self._config.failure_threshold,
            "time_until_retry": self.get_time_until_retry(),
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self._name!r}, state={self._state.value}, "
            f"failures={self._consecutive_failures}/{self._config.failure_threshold})"
        )
