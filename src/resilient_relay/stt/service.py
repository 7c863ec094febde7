"""
Resilient transcription across several speech-to-text providers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from resilient_relay.operation import ResilientOperation
from resilient_relay.providers import TRANSCRIPTION_PROVIDERS, load_provider_configs
from resilient_relay.resilience import AUTO, BreakerRegistry, OperationRequest, OrchestratorConfig
from resilient_relay.stt.providers import AzureSpeechTranscriber, GeminiTranscriber, WhisperTranscriber
from resilient_relay.stt.types import AudioInput, Transcription
from resilient_relay.telemetry import get_logger
from resilient_relay.transport import HttpTransport

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from resilient_relay.providers import ProviderConfig
    from resilient_relay.resilience import BackoffRetryExecutor, CancelToken
    from resilient_relay.stt.providers import Transcriber

logger = get_logger("resilient_relay.stt.service")

# Transcription requests carry whole audio clips
_TRANSCRIPTION_TIMEOUT = 120.0


class TranscriptionService:
    """Transcribes audio with ordered fallback across providers.

    Example:
        >>> service = TranscriptionService.from_env()
        >>> result = await service.transcribe(AudioInput.from_data_uri(uri), language="vi")
        >>> print(result.provider, result.text)
    """

    def __init__(
        self,
        transcribers: Iterable[Transcriber],
        providers: Iterable[ProviderConfig],
        *,
        registry: BreakerRegistry | None = None,
        config: OrchestratorConfig | None = None,
        executor: BackoffRetryExecutor | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        """Initialize service.

        Args:
            transcribers: Available provider adapters
            providers: Provider catalog in priority order
            registry: Shared breakers (one is built from the catalog if omitted)
            config: Orchestrator configuration
            executor: Retry executor
            transport: Transport to close with the service
        """
        self._transcribers = {t.provider_id: t for t in transcribers}
        providers = list(providers)
        self._operation: ResilientOperation[Transcription] = ResilientOperation(
            "transcription",
            providers=providers,
            handlers={pid: self._handler(t) for pid, t in self._transcribers.items()},
            registry=registry or BreakerRegistry.from_providers(providers),
            config=config or OrchestratorConfig.from_env("transcription"),
            executor=executor,
        )
        self._transport = transport

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        registry: BreakerRegistry | None = None,
    ) -> TranscriptionService:
        """Build the service from credentials present in the environment."""
        transport = HttpTransport(timeout=_TRANSCRIPTION_TIMEOUT)
        candidates = [
            GeminiTranscriber.from_env(transport, environ),
            WhisperTranscriber.from_env(transport, environ),
            AzureSpeechTranscriber.from_env(transport, environ),
        ]
        return cls(
            [t for t in candidates if t is not None],
            load_provider_configs(TRANSCRIPTION_PROVIDERS, environ),
            registry=registry,
            transport=transport,
        )

    @property
    def operation(self) -> ResilientOperation[Transcription]:
        """Underlying resilient operation."""
        return self._operation

    @property
    def registry(self) -> BreakerRegistry:
        """Breakers tracking provider health."""
        return self._operation.registry

    @staticmethod
    def _handler(transcriber: Transcriber) -> Callable[[OperationRequest], Awaitable[Transcription]]:
        async def call(request: OperationRequest) -> Transcription:
            return await transcriber.transcribe(request.payload, request.metadata.get("language"))

        return call

    async def transcribe(
        self,
        audio: AudioInput | str,
        language: str | None = None,
        preferred_provider: str | None = AUTO,
        *,
        cancel_token: CancelToken | None = None,
    ) -> Transcription:
        """Transcribe audio.

        Args:
            audio: Audio bytes, or a ``data:`` URI
            language: Language hint (e.g., 'vi', 'en-US')
            preferred_provider: Provider id to try first, or 'auto'
            cancel_token: Deadline/cancellation for the whole run

        Returns:
            Transcription from the first provider that succeeded

        Raises:
            NoCandidatesError: If no provider is configured
            ProvidersExhaustedError: If every provider failed
            OperationCancelledError: If the token fires
        """
        if isinstance(audio, str):
            audio = AudioInput.from_data_uri(audio)
        language = language.strip() if language and language.strip() else None

        result = await self._operation.invoke(
            OperationRequest(
                payload=audio,
                preferred_provider=preferred_provider,
                metadata={"language": language},
            ),
            cancel_token=cancel_token,
        )
        transcription = result.value
        transcription.provider = result.provider_id
        logger.info(
            "Transcription complete",
            provider=result.provider_id,
            attempts=result.attempts,
            chars=len(transcription.text),
        )
        return transcription

    async def close(self) -> None:
        """Close the owned transport."""
        if self._transport is not None:
            await self._transport.close()

    async def __aenter__(self) -> TranscriptionService:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
