"""
Bounded retry with capped exponential backoff.

Only failures classified as transient are retried; everything else is
returned to the caller after the first attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_relay.errors import (
    ErrorKind,
    OperationCancelledError,
    classify_exception,
    is_transient,
)
from resilient_relay.resilience.cancel import guarded, pause
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from resilient_relay.resilience.cancel import CancelToken

T = TypeVar("T")

logger = get_logger("resilient_relay.resilience.retry")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for one provider.

    Attributes:
        max_retries: Total attempts allowed against the provider, the first
            call included (0 is treated as a single attempt)
        base_delay_ms: Delay before the first retry in milliseconds
        max_delay_ms: Upper bound for any single delay in milliseconds
    """

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 15000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be > 0")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")

    @property
    def max_attempts(self) -> int:
        """Number of calls the executor may make."""
        return max(1, self.max_retries)

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that makes exactly one attempt."""
        return cls(max_retries=1)

    def calculate_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the retry that follows attempt ``attempt``.

        Args:
            attempt: Index of the failed attempt (0-based)
            retry_after: Server-suggested wait in seconds; it can lengthen
                the backoff but never past ``max_delay_ms``

        Returns:
            Delay in seconds, ``min(base * 2**attempt, max)``
        """
        delay_ms = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        if retry_after is not None and retry_after > 0:
            delay_ms = max(delay_ms, min(retry_after * 1000.0, self.max_delay_ms))
        return delay_ms / 1000.0

    def delay_schedule(self) -> list[float]:
        """All delays a fully failing transient call would wait, in order."""
        return [self.calculate_delay(i) for i in range(self.max_attempts - 1)]


@dataclass
class RetryResult:
    """Result of a retried operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        kind: Classified kind of the last error (if failed)
        attempts: Number of attempts made
        delays: Seconds waited before each retry
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    kind: ErrorKind | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    @property
    def total_delay_ms(self) -> float:
        """Total time spent waiting between attempts."""
        return sum(self.delays) * 1000


class BackoffRetryExecutor:
    """Runs one provider call with bounded, transient-only retries.

    Example:
        >>> executor = BackoffRetryExecutor()
        >>> result = await executor.execute(call, RetryConfig(max_retries=3))
        >>> if not result.success:
        ...     print(result.kind, result.attempts)
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        """Initialize executor.

        Args:
            config: Default policy when ``execute`` is given none
        """
        self._config = config or RetryConfig()

    @property
    def config(self) -> RetryConfig:
        """Default retry policy."""
        return self._config

    def should_retry(self, kind: ErrorKind, attempt: int, config: RetryConfig) -> bool:
        """Check if a failed attempt should be retried.

        Args:
            kind: Classified kind of the failure
            attempt: Index of the failed attempt (0-based)
            config: Policy in effect

        Returns:
            True if another attempt should be made
        """
        if attempt >= config.max_attempts - 1:
            return False
        return is_transient(kind)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        *,
        cancel_token: CancelToken | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
        label: str | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            config: Policy for this call (defaults to the executor's)
            cancel_token: Deadline/cancellation applied to calls and sleeps
            on_retry: Callback invoked as (attempt, error, delay) before each wait
            label: Name used in log records (e.g., provider id)

        Returns:
            RetryResult with success status and value/error

        Raises:
            OperationCancelledError: If the token fires
        """
        policy = config or self._config
        delays: list[float] = []
        attempt = 0

        while True:
            try:
                value = await guarded(operation(), cancel_token)
                return RetryResult(
                    success=True,
                    value=value,
                    attempts=attempt + 1,
                    delays=delays,
                )
            except OperationCancelledError:
                raise
            except Exception as e:
                kind = classify_exception(e)

                if not self.should_retry(kind, attempt, policy):
                    return RetryResult(
                        success=False,
                        error=e,
                        kind=kind,
                        attempts=attempt + 1,
                        delays=delays,
                    )

                delay = policy.calculate_delay(attempt, getattr(e, "retry_after", None))
                delays.append(delay)
                logger.warning(
                    "Attempt failed, retrying",
                    target=label,
                    attempt=attempt + 1,
                    kind=kind.value,
                    delay_seconds=delay,
                )
                if on_retry:
                    on_retry(attempt + 1, e, delay)

                await pause(delay, cancel_token)
                attempt += 1


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    cancel_token: CancelToken | None = None,
) -> T:
    """Execute an operation with retry, raising on failure.

    Raises:
        The last exception if all attempts fail
    """
    result = await BackoffRetryExecutor(config).execute(operation, cancel_token=cancel_token)
    if result.success:
        return result.value
    raise result.error  # type: ignore[misc]
