"""Root pytest fixtures for resilient-relay tests."""

from __future__ import annotations

import pytest

from resilient_relay.providers import ProviderConfig
from resilient_relay.resilience import BackoffRetryExecutor, BreakerRegistry, OrchestratorConfig, ProviderOrchestrator


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_provider(
    provider_id: str,
    *,
    enabled: bool = True,
    max_retries: int = 3,
    failure_threshold: int = 5,
    cooldown_ms: int = 60000,
    priority: int = 100,
) -> ProviderConfig:
    """Provider config with millisecond backoff for fast tests."""
    return ProviderConfig(
        id=provider_id,
        display_name=provider_id.upper(),
        enabled=enabled,
        max_retries=max_retries,
        base_delay_ms=1,
        max_delay_ms=4,
        failure_threshold=failure_threshold,
        cooldown_ms=cooldown_ms,
        priority=priority,
    )


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> BreakerRegistry:
    """Breaker registry driven by the fake clock."""
    return BreakerRegistry(clock=clock)


@pytest.fixture
def orchestrator(registry: BreakerRegistry) -> ProviderOrchestrator:
    """Orchestrator without an inter-provider pause."""
    return ProviderOrchestrator(
        registry,
        OrchestratorConfig(inter_provider_delay_ms=0, subject="transcription"),
        BackoffRetryExecutor(),
    )
