"""Tests for ResilientOperation."""

import pytest

from resilient_relay import ResilientOperation
from resilient_relay.errors import ConfigError, ErrorKind, ProviderError, ProvidersExhaustedError
from resilient_relay.resilience import BreakerRegistry, OperationRequest, OrchestratorConfig
from resilient_relay.telemetry import LogContext, get_log_context, set_log_context
from tests.conftest import FakeClock, make_provider

PROVIDERS = [make_provider("google"), make_provider("openai"), make_provider("azure", enabled=False)]


class TestResilientOperation:
    """Tests for ResilientOperation."""

    def test_unknown_handler_rejected(self) -> None:
        """Test handlers must name known providers."""

        async def call(request: OperationRequest) -> str:
            return "x"

        with pytest.raises(ConfigError, match="deepgram"):
            ResilientOperation("transcription", providers=PROVIDERS, handlers={"deepgram": call})

    def test_providers_without_handlers_dropped(self) -> None:
        """Test only providers with a handler are candidates."""

        async def call(request: OperationRequest) -> str:
            return "x"

        op = ResilientOperation("transcription", providers=PROVIDERS, handlers={"openai": call})
        assert [p.id for p in op.providers] == ["openai"]
        assert op.name == "transcription"

    @pytest.mark.asyncio
    async def test_invoke_falls_back(self, clock: FakeClock) -> None:
        """Test invoke returns the payload and the provider that produced it."""
        seen: list[str] = []

        async def google(request: OperationRequest) -> str:
            seen.append("google")
            raise ProviderError("bad key", kind=ErrorKind.AUTHENTICATION)

        async def openai(request: OperationRequest) -> str:
            seen.append("openai")
            return f"translated[{request.metadata['language']}]:{request.payload}"

        op = ResilientOperation(
            "translation",
            providers=PROVIDERS,
            handlers={"google": google, "openai": openai},
            registry=BreakerRegistry(clock=clock),
            config=OrchestratorConfig(inter_provider_delay_ms=0, subject="translation"),
        )
        result = await op.invoke(OperationRequest(payload="xin chào", metadata={"language": "en"}))

        assert result.value == "translated[en]:xin chào"
        assert result.provider_id == "openai"
        assert seen == ["google", "openai"]
        assert op.registry.get("google").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_invoke_restores_log_context(self) -> None:
        """Test the request's log context is scoped to the invocation."""
        captured: list[LogContext] = []

        async def call(request: OperationRequest) -> str:
            captured.append(get_log_context())
            raise ProviderError("bad input", kind=ErrorKind.INVALID_REQUEST)

        set_log_context(LogContext(request_id="outer"))
        op = ResilientOperation(
            "transcription",
            providers=[make_provider("openai")],
            handlers={"openai": call},
            config=OrchestratorConfig(inter_provider_delay_ms=0),
        )
        with pytest.raises(ProvidersExhaustedError):
            await op.invoke(OperationRequest(payload=b"", request_id="req-1"))

        assert captured[0].request_id == "req-1"
        assert captured[0].operation == "transcription"
        assert get_log_context().request_id == "outer"
        set_log_context(LogContext())
