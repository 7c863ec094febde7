"""
Error hierarchy for resilient-relay.

Provides structured error types and the shared failure taxonomy used for
retry and fallback decisions.
"""

from resilient_relay.errors.base import (
    ConfigError,
    ErrorContext,
    ExtractionError,
    NoCandidatesError,
    OperationCancelledError,
    ProviderError,
    ProvidersExhaustedError,
    RelayError,
    StreamNotFoundError,
)
from resilient_relay.errors.classification import (
    ErrorKind,
    classify_cli_failure,
    classify_exception,
    classify_http_status,
    is_input_class,
    is_transient,
)

__all__ = [
    "ConfigError",
    "ErrorContext",
    "ErrorKind",
    "ExtractionError",
    "NoCandidatesError",
    "OperationCancelledError",
    "ProviderError",
    "ProvidersExhaustedError",
    "RelayError",
    "StreamNotFoundError",
    "classify_cli_failure",
    "classify_exception",
    "classify_http_status",
    "is_input_class",
    "is_transient",
]
