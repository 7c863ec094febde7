"""
Provider orchestration: ordered, breaker-gated, retry-wrapped fallback.

Providers are attempted strictly one after another in priority order.
The first success wins and remaining providers are never called.
"""

from __future__ import annotations

import asyncio
import functools
import os
import types
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from resilient_relay.errors import (
    ErrorKind,
    NoCandidatesError,
    OperationCancelledError,
    ProvidersExhaustedError,
)
from resilient_relay.resilience.cancel import pause
from resilient_relay.resilience.failures import FailureRecord, summarize_failures
from resilient_relay.resilience.retry import BackoffRetryExecutor
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from resilient_relay.providers.config import ProviderConfig
    from resilient_relay.resilience.cancel import CancelToken
    from resilient_relay.resilience.registry import BreakerRegistry

T = TypeVar("T")

AUTO = "auto"

logger = get_logger("resilient_relay.resilience.orchestrator")


@dataclass(frozen=True)
class OperationRequest:
    """A caller request.

    Attributes:
        payload: Opaque input handed to the provider call
        preferred_provider: Provider id to try first, or 'auto'
        metadata: Request metadata (e.g., {'language': 'vi'})
        request_id: Identifier used in logs
    """

    payload: Any
    preferred_provider: str | None = AUTO
    metadata: Mapping[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", types.MappingProxyType(dict(self.metadata)))

    @property
    def preferred(self) -> str | None:
        """Preferred provider id, or None when there is no preference."""
        if not self.preferred_provider or self.preferred_provider == AUTO:
            return None
        return self.preferred_provider


@dataclass
class OperationResult(Generic[T]):
    """Successful outcome of an orchestration run.

    Attributes:
        value: Result produced by the provider
        provider_id: Provider that produced it
        attempts: Calls made against the winning provider
        failures: Failures of providers tried before it
    """

    value: T
    provider_id: str
    attempts: int = 1
    failures: list[FailureRecord] = field(default_factory=list)


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator.

    Attributes:
        inter_provider_delay_ms: Fixed pause after a provider fails and
            before the next one is attempted
        subject: What the providers do, used in aggregate messages
    """

    inter_provider_delay_ms: int = 1000
    subject: str = "provider"

    @classmethod
    def from_env(cls, subject: str = "provider") -> OrchestratorConfig:
        """Create configuration from environment variables."""
        return cls(
            inter_provider_delay_ms=int(os.getenv("RELAY_INTER_PROVIDER_DELAY_MS", "1000")),
            subject=subject,
        )


def order_candidates(
    providers: Iterable[ProviderConfig],
    preferred: str | None = None,
) -> list[ProviderConfig]:
    """Compute the attempt order for a run.

    Disabled providers are dropped first. A preferred provider that is
    still present moves to the front; the rest keep their order.

    Args:
        providers: Providers in static priority order
        preferred: Provider id to try first

    Returns:
        Candidates in attempt order, without duplicates
    """
    enabled: list[ProviderConfig] = []
    seen: set[str] = set()
    for provider in providers:
        if provider.enabled and provider.id not in seen:
            enabled.append(provider)
            seen.add(provider.id)

    if preferred and preferred in seen:
        enabled.sort(key=lambda p: p.id != preferred)
    return enabled


class ProviderOrchestrator:
    """Runs an operation against redundant providers until one succeeds.

    Example:
        >>> registry = BreakerRegistry.from_providers(configs)
        >>> orchestrator = ProviderOrchestrator(registry)
        >>> result = await orchestrator.run(request, configs, call_provider)
        >>> print(result.provider_id, result.value)
    """

    def __init__(
        self,
        registry: BreakerRegistry,
        config: OrchestratorConfig | None = None,
        executor: BackoffRetryExecutor | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            registry: Shared per-provider breakers
            config: Orchestrator configuration
            executor: Retry executor used for each provider
        """
        self._registry = registry
        self._config = config or OrchestratorConfig()
        self._executor = executor or BackoffRetryExecutor()

    @property
    def registry(self) -> BreakerRegistry:
        """Breaker registry in use."""
        return self._registry

    async def run(
        self,
        request: OperationRequest,
        providers: Iterable[ProviderConfig],
        call: Callable[[ProviderConfig, OperationRequest], Awaitable[T]],
        *,
        cancel_token: CancelToken | None = None,
    ) -> OperationResult[T]:
        """Run ``call`` against providers until one succeeds.

        Args:
            request: Caller request
            providers: Candidate providers in static priority order
            call: Async provider call, given the provider and the request
            cancel_token: Deadline/cancellation for the whole run

        Returns:
            OperationResult of the first provider that succeeded

        Raises:
            NoCandidatesError: If no provider is enabled
            ProvidersExhaustedError: If every candidate failed or was skipped
            OperationCancelledError: If the token fires
        """
        subject = self._config.subject
        candidates = order_candidates(providers, request.preferred)
        if not candidates:
            logger.error("No enabled providers", request_id=request.request_id)
            raise NoCandidatesError(f"No {subject} providers are available or configured")

        failures: list[FailureRecord] = []
        last_error: Exception | None = None

        for index, provider in enumerate(candidates):
            breaker = self._registry.register(provider.id, provider.breaker_config)

            if not breaker.can_execute():
                logger.warning(
                    "Provider quarantined, skipping",
                    provider=provider.id,
                    time_until_retry=breaker.get_time_until_retry(),
                )
                failures.append(
                    FailureRecord(
                        provider_id=provider.id,
                        kind=ErrorKind.QUARANTINED,
                        message=f"{provider.display_name} is temporarily disabled due to repeated failures",
                        attempts=0,
                    )
                )
                continue

            logger.info(
                "Attempting provider",
                provider=provider.id,
                name=provider.display_name,
                request_id=request.request_id,
            )
            try:
                outcome = await self._executor.execute(
                    functools.partial(call, provider, request),
                    provider.retry_config,
                    cancel_token=cancel_token,
                    label=provider.id,
                )
            except (OperationCancelledError, asyncio.CancelledError):
                breaker.release()
                raise

            if outcome.success:
                breaker.on_success()
                if failures:
                    logger.info(
                        "Succeeded after fallback",
                        provider=provider.id,
                        failed=[f.provider_id for f in failures],
                    )
                return OperationResult(
                    value=outcome.value,
                    provider_id=provider.id,
                    attempts=outcome.attempts,
                    failures=failures,
                )

            # One breaker failure per provider per run, however many retries
            breaker.on_failure()
            error = outcome.error
            last_error = error
            failures.append(
                FailureRecord(
                    provider_id=provider.id,
                    kind=outcome.kind or ErrorKind.OTHER,
                    message=getattr(error, "message", None) or str(error),
                    attempts=outcome.attempts,
                )
            )
            logger.warning(
                "Provider failed",
                provider=provider.id,
                kind=(outcome.kind or ErrorKind.OTHER).value,
                attempts=outcome.attempts,
                error=str(error),
            )

            if index < len(candidates) - 1:
                await pause(self._config.inter_provider_delay_ms / 1000.0, cancel_token)

        summary = summarize_failures(failures, subject)
        logger.error(
            "All providers failed",
            providers=[f.provider_id for f in failures],
            kind=summary.kind.value,
        )
        raise ProvidersExhaustedError(summary.message, failures, hint=summary.hint) from last_error
