"""
Resilience layer - circuit breaking, backoff retry and ordered fallback.

This module provides the building blocks every operation type reuses:
- CircuitBreaker: Closed/Open/Half-Open state machine per provider
- BreakerRegistry: Process-wide breakers shared across requests
- BackoffRetryExecutor: Transient-only retry with capped exponential backoff
- ProviderOrchestrator: Sequential provider fallback with aggregate errors
- CancelToken: Deadline/cancellation for every suspension point
"""

from resilient_relay.resilience.cancel import CancelReason, CancelToken, guarded, pause
from resilient_relay.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
)
from resilient_relay.resilience.failures import (
    FailureRecord,
    FailureSummary,
    most_informative,
    summarize_failures,
)
from resilient_relay.resilience.orchestrator import (
    AUTO,
    OperationRequest,
    OperationResult,
    OrchestratorConfig,
    ProviderOrchestrator,
    order_candidates,
)
from resilient_relay.resilience.registry import BreakerRegistry
from resilient_relay.resilience.retry import (
    BackoffRetryExecutor,
    RetryConfig,
    RetryResult,
    with_retry,
)

__all__ = [
    "AUTO",
    "BackoffRetryExecutor",
    "BreakerRegistry",
    "CancelReason",
    "CancelToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    "FailureRecord",
    "FailureSummary",
    "OperationRequest",
    "OperationResult",
    "OrchestratorConfig",
    "ProviderOrchestrator",
    "RetryConfig",
    "RetryResult",
    "guarded",
    "most_informative",
    "order_candidates",
    "pause",
    "summarize_failures",
    "with_retry",
]
