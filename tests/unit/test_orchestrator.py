"""Tests for provider orchestration."""

from __future__ import annotations

import asyncio

import pytest

from resilient_relay.errors import (
    ErrorKind,
    NoCandidatesError,
    OperationCancelledError,
    ProviderError,
    ProvidersExhaustedError,
)
from resilient_relay.providers import ProviderConfig
from resilient_relay.resilience import (
    BreakerRegistry,
    CancelToken,
    CircuitState,
    OperationRequest,
    OrchestratorConfig,
    ProviderOrchestrator,
    order_candidates,
)
from tests.conftest import FakeClock, make_provider


class StubProviders:
    """Scripted provider calls; each id maps to a list of outcomes."""

    def __init__(self, **script: list[object]) -> None:
        self.script = {pid: list(outcomes) for pid, outcomes in script.items()}
        self.calls: list[str] = []

    async def __call__(self, provider: ProviderConfig, request: OperationRequest) -> str:
        self.calls.append(provider.id)
        outcomes = self.script.get(provider.id) or [f"{provider.id}:{request.payload}"]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return str(outcome)


def err(kind: ErrorKind, message: str = "failed") -> ProviderError:
    return ProviderError(message, kind=kind)


PROVIDERS = [make_provider("google"), make_provider("openai"), make_provider("azure")]


class TestOrderCandidates:
    """Tests for order_candidates."""

    def test_static_order(self) -> None:
        """Test the default priority order is kept."""
        assert [p.id for p in order_candidates(PROVIDERS)] == ["google", "openai", "azure"]

    def test_preferred_moves_to_front(self) -> None:
        """Test a preferred provider is tried first."""
        ordered = order_candidates(PROVIDERS, "azure")
        assert [p.id for p in ordered] == ["azure", "google", "openai"]

    def test_disabled_filtered_before_preference(self) -> None:
        """Test a disabled preferred provider is ignored."""
        providers = [make_provider("google"), make_provider("openai", enabled=False), make_provider("azure")]
        assert [p.id for p in order_candidates(providers, "openai")] == ["google", "azure"]

    def test_unknown_preference_ignored(self) -> None:
        """Test an unknown preferred id leaves the order unchanged."""
        assert [p.id for p in order_candidates(PROVIDERS, "deepgram")] == ["google", "openai", "azure"]

    def test_duplicates_removed(self) -> None:
        """Test duplicate provider ids appear once."""
        providers = [make_provider("google"), make_provider("openai"), make_provider("google")]
        assert [p.id for p in order_candidates(providers, "openai")] == ["openai", "google"]


class TestOperationRequest:
    """Tests for OperationRequest."""

    def test_auto_means_no_preference(self) -> None:
        """Test 'auto' and None both mean no preference."""
        assert OperationRequest(payload=1).preferred is None
        assert OperationRequest(payload=1, preferred_provider=None).preferred is None
        assert OperationRequest(payload=1, preferred_provider="openai").preferred == "openai"

    def test_metadata_is_read_only(self) -> None:
        """Test request metadata cannot be mutated."""
        request = OperationRequest(payload=1, metadata={"language": "vi"})
        with pytest.raises(TypeError):
            request.metadata["language"] = "en"  # type: ignore[index]


class TestProviderOrchestrator:
    """Tests for ProviderOrchestrator."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self, orchestrator: ProviderOrchestrator) -> None:
        """Test remaining providers are never called after a success."""
        stub = StubProviders()
        result = await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS, stub)
        assert result.value == "google:clip"
        assert result.provider_id == "google"
        assert result.failures == []
        assert stub.calls == ["google"]

    @pytest.mark.asyncio
    async def test_preferred_provider_attempted_first(self, orchestrator: ProviderOrchestrator) -> None:
        """Test the preferred provider is the first call regardless of priority."""
        stub = StubProviders()
        result = await orchestrator.run(OperationRequest(payload="clip", preferred_provider="azure"), PROVIDERS, stub)
        assert stub.calls[0] == "azure"
        assert result.provider_id == "azure"

    @pytest.mark.asyncio
    async def test_permanent_failure_falls_back(
        self, orchestrator: ProviderOrchestrator, registry: BreakerRegistry
    ) -> None:
        """Test A failing permanently and B succeeding returns B with one breaker failure for A."""
        stub = StubProviders(google=[err(ErrorKind.INVALID_REQUEST, "unsupported audio")])
        result = await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS, stub)

        assert result.provider_id == "openai"
        assert stub.calls == ["google", "openai"]
        assert [f.provider_id for f in result.failures] == ["google"]
        assert result.failures[0].attempts == 1
        assert registry.get("google").consecutive_failures == 1
        assert registry.get("google").get_stats().failures == 1
        assert registry.get("openai").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_transient_failures_count_once_per_run(
        self, orchestrator: ProviderOrchestrator, registry: BreakerRegistry
    ) -> None:
        """Test exhausting retries registers a single breaker failure."""
        stub = StubProviders(google=[err(ErrorKind.OVERLOADED)])
        result = await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS, stub)

        assert stub.calls == ["google", "google", "google", "openai"]
        assert result.failures[0].attempts == 3
        assert result.failures[0].kind == ErrorKind.OVERLOADED
        assert registry.get("google").get_stats().failures == 1

    @pytest.mark.asyncio
    async def test_retry_then_success_on_same_provider(self, orchestrator: ProviderOrchestrator) -> None:
        """Test a transient blip is absorbed without falling back."""
        stub = StubProviders(google=[err(ErrorKind.RATE_LIMITED), "recovered"])
        result = await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS, stub)
        assert result.provider_id == "google"
        assert result.value == "recovered"
        assert result.attempts == 2
        assert stub.calls == ["google", "google"]

    @pytest.mark.asyncio
    async def test_no_candidates(self, orchestrator: ProviderOrchestrator) -> None:
        """Test all providers disabled fails immediately without calls."""
        stub = StubProviders()
        disabled = [make_provider("google", enabled=False), make_provider("openai", enabled=False)]
        with pytest.raises(NoCandidatesError, match="No transcription providers"):
            await orchestrator.run(OperationRequest(payload="clip"), disabled, stub)
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_exhausted_aggregates_in_order(self, orchestrator: ProviderOrchestrator) -> None:
        """Test the aggregate error carries every failure in attempt order."""
        stub = StubProviders(
            google=[err(ErrorKind.OVERLOADED)],
            openai=[err(ErrorKind.AUTHENTICATION, "bad key")],
            azure=[err(ErrorKind.NETWORK)],
        )
        with pytest.raises(ProvidersExhaustedError) as exc_info:
            await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS, stub)

        error = exc_info.value
        assert error.provider_ids == ["google", "openai", "azure"]
        assert [f.kind for f in error.failures] == [ErrorKind.OVERLOADED, ErrorKind.AUTHENTICATION, ErrorKind.NETWORK]
        assert "overloaded or rate limited" in error.message
        assert "google (overloaded after 3 attempts)" in error.message
        assert isinstance(error.__cause__, ProviderError)

    @pytest.mark.asyncio
    async def test_raw_exception_never_surfaces(self, orchestrator: ProviderOrchestrator) -> None:
        """Test a provider's unexpected exception becomes part of the aggregate."""
        stub = StubProviders(google=[KeyError("text")], openai=[err(ErrorKind.INVALID_REQUEST)])
        with pytest.raises(ProvidersExhaustedError) as exc_info:
            await orchestrator.run(OperationRequest(payload="clip"), PROVIDERS[:2], stub)
        assert exc_info.value.failures[0].kind == ErrorKind.OTHER

    @pytest.mark.asyncio
    async def test_quarantined_provider_skipped(self, clock: FakeClock) -> None:
        """Test an open breaker skips the provider and records it as quarantined."""
        providers = [make_provider("google", failure_threshold=1, cooldown_ms=120000), make_provider("openai")]
        registry = BreakerRegistry.from_providers(providers, clock=clock)
        orchestrator = ProviderOrchestrator(registry, OrchestratorConfig(inter_provider_delay_ms=0))

        stub = StubProviders(google=[err(ErrorKind.INVALID_REQUEST)])
        await orchestrator.run(OperationRequest(payload="a"), providers, stub)
        assert registry.get("google").state == CircuitState.OPEN

        stub.calls.clear()
        result = await orchestrator.run(OperationRequest(payload="b"), providers, stub)
        assert stub.calls == ["openai"]
        assert result.failures[0].kind == ErrorKind.QUARANTINED
        assert result.failures[0].attempts == 0

    @pytest.mark.asyncio
    async def test_open_breaker_allows_one_trial_after_cooldown(self, clock: FakeClock) -> None:
        """Test concurrent runs get a single half-open trial, then the circuit closes."""
        providers = [make_provider("google", failure_threshold=1, cooldown_ms=1000), make_provider("openai")]
        registry = BreakerRegistry.from_providers(providers, clock=clock)
        orchestrator = ProviderOrchestrator(registry, OrchestratorConfig(inter_provider_delay_ms=0))
        registry.get("google").on_failure()
        clock.advance(2)

        gate = asyncio.Event()
        calls: list[str] = []

        async def call(provider: ProviderConfig, request: OperationRequest) -> str:
            calls.append(provider.id)
            if provider.id == "google":
                await gate.wait()
            return provider.id

        first = asyncio.ensure_future(orchestrator.run(OperationRequest(payload=1), providers, call))
        await asyncio.sleep(0)
        second = await orchestrator.run(OperationRequest(payload=2), providers, call)
        gate.set()
        first_result = await first

        assert first_result.provider_id == "google"
        assert second.provider_id == "openai"
        assert second.failures[0].kind == ErrorKind.QUARANTINED
        assert calls.count("google") == 1
        assert registry.get("google").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_propagates_and_spares_breaker(
        self, orchestrator: ProviderOrchestrator, registry: BreakerRegistry
    ) -> None:
        """Test a fired token raises and is not counted as a provider failure."""

        async def hang(provider: ProviderConfig, request: OperationRequest) -> str:
            await asyncio.sleep(30)
            return "never"

        with pytest.raises(OperationCancelledError):
            await orchestrator.run(
                OperationRequest(payload="clip"), PROVIDERS, hang, cancel_token=CancelToken(timeout=0.02)
            )
        assert registry.get("google").get_stats().failures == 0

    @pytest.mark.asyncio
    async def test_inter_provider_pause(self, registry: BreakerRegistry) -> None:
        """Test the fixed pause happens between providers, not after the last."""
        orchestrator = ProviderOrchestrator(registry, OrchestratorConfig(inter_provider_delay_ms=10_000))
        stub = StubProviders(google=[err(ErrorKind.INVALID_REQUEST)])
        with pytest.raises(OperationCancelledError):
            await orchestrator.run(
                OperationRequest(payload="clip"), PROVIDERS, stub, cancel_token=CancelToken(timeout=0.05)
            )
        assert stub.calls == ["google"]

        single = await ProviderOrchestrator(registry, OrchestratorConfig(inter_provider_delay_ms=10_000)).run(
            OperationRequest(payload="clip"), [make_provider("openai")], StubProviders(), cancel_token=CancelToken(timeout=5)
        )
        assert single.provider_id == "openai"
