"""
Process-wide breaker registry.

One registry is built at startup and passed to every orchestrator that
shares provider health; breaker state lives for the life of the process.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from resilient_relay.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from resilient_relay.providers.config import ProviderConfig

logger = get_logger("resilient_relay.resilience.registry")


class BreakerRegistry:
    """Holds one CircuitBreaker per provider id.

    Example:
        >>> registry = BreakerRegistry.from_providers(configs)
        >>> registry.get("google").can_execute()
        True
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize registry.

        Args:
            default_config: Settings for breakers created on first use
            clock: Time source shared by all breakers
        """
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_providers(
        cls,
        providers: Iterable[ProviderConfig],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> BreakerRegistry:
        """Create a registry with a breaker for each provider's settings."""
        registry = cls(clock=clock)
        for provider in providers:
            registry.register(provider.id, provider.breaker_config)
        return registry

    def register(self, provider_id: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        """Create (or return the existing) breaker for a provider.

        Settings given for a provider that already has a breaker are applied
        only while that breaker is unused; otherwise the running breaker and
        its state are kept and the mismatch is logged.
        """
        with self._lock:
            breaker = self._breakers.get(provider_id)
            if breaker is None:
                breaker = CircuitBreaker(
                    provider_id, config or self._default_config, clock=self._clock
                )
                self._breakers[provider_id] = breaker
            elif config is not None and config != breaker.config:
                if breaker.reconfigure(config):
                    logger.debug("Breaker settings replaced", provider=provider_id)
                else:
                    logger.warning(
                        "Breaker already in use, keeping its settings",
                        provider=provider_id,
                        failure_threshold=breaker.config.failure_threshold,
                        ignored_failure_threshold=config.failure_threshold,
                    )
            return breaker

    def get(self, provider_id: str) -> CircuitBreaker:
        """Get a provider's breaker, creating one with default settings if needed."""
        breaker = self._breakers.get(provider_id)
        if breaker is not None:
            return breaker
        return self.register(provider_id)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._breakers

    def provider_ids(self) -> list[str]:
        """Registered provider ids."""
        return list(self._breakers)

    def reset(self) -> None:
        """Close every breaker."""
        for breaker in self._breakers.values():
            breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Per-provider breaker state for health reporting."""
        return {pid: breaker.snapshot() for pid, breaker in self._breakers.items()}
