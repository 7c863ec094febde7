"""
resilient-relay: reliable operations over unreliable upstream providers.

Circuit breaking, bounded backoff retry and ordered fallback across
redundant providers, mirrors and invocation strategies.
"""
from __future__ import annotations

from resilient_relay.errors import (
    ErrorKind,
    NoCandidatesError,
    OperationCancelledError,
    ProviderError,
    ProvidersExhaustedError,
    RelayError,
)
from resilient_relay.operation import ResilientOperation
from resilient_relay.providers import ProviderConfig, load_provider_configs
from resilient_relay.resilience import (
    BackoffRetryExecutor,
    BreakerRegistry,
    CancelToken,
    CircuitBreaker,
    OperationRequest,
    OperationResult,
    ProviderOrchestrator,
    RetryConfig,
)

__version__ = "0.1.0"

__all__ = [
    # Resilience
    "BackoffRetryExecutor",
    "BreakerRegistry",
    "CancelToken",
    "CircuitBreaker",
    # Errors
    "ErrorKind",
    "NoCandidatesError",
    "OperationCancelledError",
    # Operation
    "OperationRequest",
    "OperationResult",
    # Providers
    "ProviderConfig",
    "ProviderError",
    "ProviderOrchestrator",
    "ProvidersExhaustedError",
    "RelayError",
    "ResilientOperation",
    "RetryConfig",
    "load_provider_configs",
    # Version
    "__version__",
]
