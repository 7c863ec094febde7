"""
Resilient operation: the caller-facing ``invoke`` surface.

Binds a provider catalog, a shared breaker registry and one async call per
provider into a single reusable operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar

from resilient_relay.errors import ConfigError
from resilient_relay.resilience import (
    BreakerRegistry,
    OperationRequest,
    OperationResult,
    OrchestratorConfig,
    ProviderOrchestrator,
)
from resilient_relay.telemetry import log_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from resilient_relay.providers.config import ProviderConfig
    from resilient_relay.resilience import BackoffRetryExecutor, CancelToken

T = TypeVar("T")


class ResilientOperation(Generic[T]):
    """An operation served by several interchangeable providers.

    Example:
        >>> op = ResilientOperation(
        ...     "translate",
        ...     providers=configs,
        ...     handlers={"google": translate_google, "anthropic": translate_claude},
        ...     registry=registry,
        ... )
        >>> result = await op.invoke(OperationRequest(payload=text, preferred_provider="anthropic"))
    """

    def __init__(
        self,
        name: str,
        *,
        providers: Sequence[ProviderConfig],
        handlers: Mapping[str, Callable[[OperationRequest], Awaitable[T]]],
        registry: BreakerRegistry | None = None,
        config: OrchestratorConfig | None = None,
        executor: BackoffRetryExecutor | None = None,
    ) -> None:
        """Initialize operation.

        Args:
            name: Operation name for logs and messages
            providers: Provider catalog in static priority order
            handlers: Async call per provider id
            registry: Shared breakers (a private registry is created if omitted)
            config: Orchestrator configuration
            executor: Retry executor

        Raises:
            ConfigError: If a handler is registered for an unknown provider
        """
        known = {p.id for p in providers}
        unknown = sorted(set(handlers) - known)
        if unknown:
            raise ConfigError(f"Handlers registered for unknown providers: {', '.join(unknown)}")

        self._name = name
        # providers without a handler cannot be served
        self._providers = [p for p in providers if p.id in handlers]
        self._handlers = dict(handlers)
        self._orchestrator = ProviderOrchestrator(
            registry or BreakerRegistry.from_providers(self._providers),
            config or OrchestratorConfig(subject=name),
            executor,
        )

    @property
    def name(self) -> str:
        """Operation name."""
        return self._name

    @property
    def providers(self) -> list[ProviderConfig]:
        """Providers this operation can use, in static order."""
        return list(self._providers)

    @property
    def registry(self) -> BreakerRegistry:
        """Breaker registry in use."""
        return self._orchestrator.registry

    async def _dispatch(self, provider: ProviderConfig, request: OperationRequest) -> T:
        return await self._handlers[provider.id](request)

    async def invoke(
        self,
        request: OperationRequest,
        *,
        cancel_token: CancelToken | None = None,
    ) -> OperationResult[T]:
        """Run the operation with breaker-gated, retried fallback.

        Raises:
            NoCandidatesError: If no provider is enabled
            ProvidersExhaustedError: If every provider failed
            OperationCancelledError: If the token fires
        """
        with log_context(request_id=request.request_id, operation=self._name):
            return await self._orchestrator.run(
                request, self._providers, self._dispatch, cancel_token=cancel_token
            )
