"""
Base error classes for resilient-relay.

Provides a layered error hierarchy:
- RelayError: Base class for all library errors
- ConfigError: Invalid provider or component configuration
- ProviderError: A single provider/mirror/strategy failure, tagged with an ErrorKind
- ProvidersExhaustedError: Every candidate failed; carries all failure records
- NoCandidatesError: No enabled candidate to try
- OperationCancelledError: Caller deadline or cancellation fired
- StreamNotFoundError: No mirror produced a usable stream
- ExtractionError: Every extraction strategy failed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from resilient_relay.errors.classification import ErrorKind

if TYPE_CHECKING:
    from resilient_relay.resilience.failures import FailureRecord


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'provider', 'orchestrator', 'resolver')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class RelayError(Exception):
    """Base class for all resilient-relay errors.

    Attributes:
        message: Human-readable error message
        context: Structured error context
    """

    kind: ErrorKind = ErrorKind.OTHER

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> RelayError:
        """Add a hint to this error."""
        self.context.hint = hint
        self.args = (self._format_message(),)
        return self


class ConfigError(RelayError):
    """Invalid configuration.

    Raised when:
    - Provider settings fail validation
    - A settings file cannot be read or parsed
    - A provider call is registered for an unknown provider
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        path: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if path:
            ctx.details["path"] = path
        super().__init__(message, ctx)
        self.path = path


class ProviderError(RelayError):
    """A failure of one provider, mirror or strategy.

    Adapters raise this after translating their native failure, so that
    retry decisions are a structural match on ``kind``.

    Attributes:
        kind: Classified failure kind
        provider_id: Provider that failed (if known)
        status_code: HTTP status code (if any)
        retry_after: Server-suggested delay in seconds (if any)
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider_id: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="provider")
        ctx.details["kind"] = kind.value
        if provider_id:
            ctx.details["provider_id"] = provider_id
        if status_code is not None:
            ctx.details["status_code"] = status_code
        super().__init__(message, ctx)
        self.kind = kind
        self.provider_id = provider_id
        self.status_code = status_code
        self.retry_after = retry_after
        if cause is not None:
            self.__cause__ = cause


class ProvidersExhaustedError(RelayError):
    """Every candidate was tried (or quarantined) and none succeeded.

    Attributes:
        failures: Failure records in attempt order
    """

    def __init__(
        self,
        message: str,
        failures: list[FailureRecord],
        *,
        hint: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="orchestrator", hint=hint)
        ctx.details["providers"] = [f.provider_id for f in failures]
        super().__init__(message, ctx)
        self.failures = list(failures)

    @property
    def provider_ids(self) -> list[str]:
        """Providers in the order they were attempted."""
        return [f.provider_id for f in self.failures]


class NoCandidatesError(RelayError):
    """No enabled candidate is available; nothing was attempted."""

    def __init__(self, message: str = "No providers are available or configured") -> None:
        super().__init__(message, ErrorContext(source="orchestrator"))


class OperationCancelledError(RelayError):
    """The caller's deadline elapsed or the caller cancelled the operation."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled", *, reason: str | None = None) -> None:
        ctx = ErrorContext(source="cancel")
        if reason:
            ctx.details["reason"] = reason
        super().__init__(message, ctx)
        self.reason = reason


class StreamNotFoundError(RelayError):
    """No mirror in any family returned a usable stream.

    Attributes:
        resource_id: The resource that could not be resolved
        failures: Per-mirror failure records in attempt order
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        resource_id: str,
        failures: list[FailureRecord] | None = None,
    ) -> None:
        ctx = ErrorContext(source="resolver")
        ctx.details["resource_id"] = resource_id
        super().__init__("Could not retrieve audio stream for this video", ctx)
        self.resource_id = resource_id
        self.failures = list(failures or [])


class ExtractionError(RelayError):
    """Extraction through the CLI tool failed.

    Attributes:
        kind: Kind of the most informative failure
        failures: Per-strategy failure records in attempt order
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.OTHER,
        failures: list[FailureRecord] | None = None,
        hint: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="extraction", hint=hint)
        ctx.details["kind"] = kind.value
        super().__init__(message, ctx)
        self.kind = kind
        self.failures = list(failures or [])
