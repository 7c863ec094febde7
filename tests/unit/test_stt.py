"""Tests for speech-to-text adapters and the transcription service."""

import base64
import json

import pytest
from pytest_httpx import HTTPXMock

from resilient_relay.errors import ErrorKind, NoCandidatesError, ProviderError, ProvidersExhaustedError
from resilient_relay.resilience import BreakerRegistry, OrchestratorConfig
from resilient_relay.stt import (
    AudioInput,
    AzureSpeechTranscriber,
    GeminiTranscriber,
    TranscriptionService,
    WhisperTranscriber,
    build_transcription_prompt,
)
from resilient_relay.transport import HttpTransport
from tests.conftest import FakeClock, make_provider

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
WHISPER_URL = "https://api.openai.com/v1/audio/transcriptions"
AZURE_URL = "https://westeurope.stt.speech.microsoft.com/speech/recognition/conversation/cognitiveservices/v1"

AUDIO = AudioInput(data=b"RIFFfakeaudio", mime_type="audio/wav")


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


class TestAudioInput:
    """Tests for AudioInput."""

    def test_from_data_uri(self) -> None:
        """Test parsing a data URI with codec parameters."""
        audio = AudioInput.from_data_uri("data:audio/webm;codecs=opus;base64,SGVsbG8=")
        assert audio.data == b"Hello"
        assert audio.mime_type == "audio/webm"
        assert audio.filename == "audio.webm"

    @pytest.mark.parametrize(
        "uri,message",
        [
            ("SGVsbG8=", "data URI"),
            ("data:audio/wav,SGVsbG8=", "data URI"),
            ("data:audio/wav;base64,@@not-base64@@", "not valid base64"),
            ("data:audio/wav;base64,", "empty"),
        ],
    )
    def test_invalid_data_uri(self, uri: str, message: str) -> None:
        """Test malformed URIs are input failures."""
        with pytest.raises(ProviderError, match=message) as exc_info:
            AudioInput.from_data_uri(uri)
        assert exc_info.value.kind == ErrorKind.INVALID_REQUEST

    def test_extension(self) -> None:
        """Test MIME types map to upload extensions."""
        assert AudioInput(b"x", "audio/mpeg").extension == "mp3"
        assert AudioInput(b"x", "audio/x-unknown").extension == "webm"
        assert AUDIO.to_base64() == base64.b64encode(b"RIFFfakeaudio").decode()


class TestPrompt:
    """Tests for build_transcription_prompt."""

    def test_with_language(self) -> None:
        """Test the language hint is part of the prompt."""
        prompt = build_transcription_prompt("Vietnamese")
        assert prompt.startswith("Transcribe the following audio to text. The language of the audio is Vietnamese.")
        assert prompt.endswith("Return only the transcription text.")

    def test_without_language(self) -> None:
        """Test automatic language detection is requested without a hint."""
        assert "Identify the language automatically" in build_transcription_prompt(None)


class TestGeminiTranscriber:
    """Tests for GeminiTranscriber."""

    @pytest.mark.asyncio
    async def test_transcribe(self, httpx_mock: HTTPXMock) -> None:
        """Test the request shape and text extraction."""
        httpx_mock.add_response(url=GEMINI_URL, method="POST", json=gemini_reply("  xin chào  "))

        async with HttpTransport() as transport:
            result = await GeminiTranscriber(transport, "g-key").transcribe(AUDIO, "vi")

        assert result.text == "xin chào"
        assert result.provider == "google"
        assert result.language == "vi"

        request = httpx_mock.get_request()
        assert request.headers["x-goog-api-key"] == "g-key"
        parts = json.loads(request.content)["contents"][0]["parts"]
        assert "The language of the audio is vi." in parts[0]["text"]
        assert parts[1]["inline_data"] == {"mime_type": "audio/wav", "data": AUDIO.to_base64()}

    @pytest.mark.asyncio
    async def test_empty_candidates(self, httpx_mock: HTTPXMock) -> None:
        """Test a reply without text is a provider failure."""
        httpx_mock.add_response(url=GEMINI_URL, json={"candidates": []})

        async with HttpTransport() as transport:
            with pytest.raises(ProviderError, match="no transcription") as exc_info:
                await GeminiTranscriber(transport, "g-key").transcribe(AUDIO)
        assert exc_info.value.kind == ErrorKind.OTHER

    def test_from_env(self) -> None:
        """Test either Google key variable enables the adapter."""
        transport = HttpTransport()
        assert GeminiTranscriber.from_env(transport, {"GEMINI_API_KEY": "g"}) is not None
        assert GeminiTranscriber.from_env(transport, {}) is None


class TestWhisperTranscriber:
    """Tests for WhisperTranscriber."""

    @pytest.mark.asyncio
    async def test_transcribe(self, httpx_mock: HTTPXMock) -> None:
        """Test multipart upload with a two-letter language code."""
        httpx_mock.add_response(url=WHISPER_URL, method="POST", json={"text": "hello world"})

        async with HttpTransport() as transport:
            result = await WhisperTranscriber(transport, "o-key").transcribe(AUDIO, "en-US")

        assert result.text == "hello world"
        assert result.provider == "openai"

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer o-key"
        body = request.read()
        assert b'name="model"\r\n\r\nwhisper-1' in body
        assert b'name="language"\r\n\r\nen\r\n' in body
        assert b'filename="audio.wav"' in body

    @pytest.mark.asyncio
    async def test_auth_failure(self, httpx_mock: HTTPXMock) -> None:
        """Test a 401 is classified as an authentication failure."""
        httpx_mock.add_response(
            url=WHISPER_URL, status_code=401, json={"error": {"message": "Incorrect API key provided"}}
        )

        async with HttpTransport() as transport:
            with pytest.raises(ProviderError, match="Incorrect API key") as exc_info:
                await WhisperTranscriber(transport, "bad").transcribe(AUDIO)
        assert exc_info.value.kind == ErrorKind.AUTHENTICATION
        assert exc_info.value.provider_id == "openai"


class TestAzureSpeechTranscriber:
    """Tests for AzureSpeechTranscriber."""

    @pytest.mark.asyncio
    async def test_transcribe(self, httpx_mock: HTTPXMock) -> None:
        """Test raw audio upload and the recognition result."""
        httpx_mock.add_response(
            url=f"{AZURE_URL}?language=vi-VN",
            json={"RecognitionStatus": "Success", "DisplayText": "Xin chào.", "Confidence": 0.91},
        )

        async with HttpTransport() as transport:
            result = await AzureSpeechTranscriber(transport, "a-key", "westeurope").transcribe(AUDIO, "vi-VN")

        assert result.text == "Xin chào."
        assert result.confidence == 0.91
        request = httpx_mock.get_request()
        assert request.headers["Ocp-Apim-Subscription-Key"] == "a-key"
        assert request.content == b"RIFFfakeaudio"

    @pytest.mark.asyncio
    async def test_no_match(self, httpx_mock: HTTPXMock) -> None:
        """Test an unrecognized clip is an input failure."""
        httpx_mock.add_response(url=f"{AZURE_URL}?language=en-US", json={"RecognitionStatus": "NoMatch"})

        async with HttpTransport() as transport:
            with pytest.raises(ProviderError, match="Azure transcription failed: NoMatch") as exc_info:
                await AzureSpeechTranscriber(transport, "a-key", "westeurope").transcribe(AUDIO)
        assert exc_info.value.kind == ErrorKind.INVALID_REQUEST

    def test_from_env_needs_region(self) -> None:
        """Test the key alone is not enough."""
        transport = HttpTransport()
        assert AzureSpeechTranscriber.from_env(transport, {"AZURE_SPEECH_KEY": "k"}) is None
        assert AzureSpeechTranscriber.from_env(
            transport, {"AZURE_SPEECH_KEY": "k", "AZURE_SPEECH_REGION": "westeurope"}
        ) is not None


def make_service(transport: HttpTransport, clock: FakeClock) -> TranscriptionService:
    return TranscriptionService(
        [
            GeminiTranscriber(transport, "g-key"),
            WhisperTranscriber(transport, "o-key"),
            AzureSpeechTranscriber(transport, "a-key", "westeurope"),
        ],
        [make_provider("google"), make_provider("openai"), make_provider("azure")],
        registry=BreakerRegistry(clock=clock),
        config=OrchestratorConfig(inter_provider_delay_ms=0, subject="transcription"),
        transport=transport,
    )


class TestTranscriptionService:
    """Tests for TranscriptionService."""

    @pytest.mark.asyncio
    async def test_falls_back_after_overload(self, httpx_mock: HTTPXMock, clock: FakeClock) -> None:
        """Test an overloaded provider is retried, then the next provider serves."""
        for _ in range(3):
            httpx_mock.add_response(url=GEMINI_URL, status_code=503, json={"error": {"message": "overloaded"}})
        httpx_mock.add_response(url=WHISPER_URL, json={"text": "hello"})

        async with make_service(HttpTransport(), clock) as service:
            result = await service.transcribe(AUDIO, language=" en ")

            assert result.text == "hello"
            assert result.provider == "openai"
            assert result.language == "en"
            assert service.registry.get("google").consecutive_failures == 1
            assert service.registry.get("openai").consecutive_failures == 0

        assert len(httpx_mock.get_requests(url=GEMINI_URL)) == 3

    @pytest.mark.asyncio
    async def test_preferred_provider_and_data_uri(self, httpx_mock: HTTPXMock, clock: FakeClock) -> None:
        """Test a data URI and a preferred provider go straight to that provider."""
        httpx_mock.add_response(
            url=f"{AZURE_URL}?language=en-US",
            json={"RecognitionStatus": "Success", "DisplayText": "Hello."},
        )
        uri = "data:audio/wav;base64," + base64.b64encode(b"RIFFclip").decode()

        async with make_service(HttpTransport(), clock) as service:
            result = await service.transcribe(uri, preferred_provider="azure")

        assert result.provider == "azure"
        assert result.text == "Hello."
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, httpx_mock: HTTPXMock, clock: FakeClock) -> None:
        """Test the aggregate error names every provider in order."""
        httpx_mock.add_response(url=GEMINI_URL, status_code=401, json={"error": {"message": "bad key"}})
        httpx_mock.add_response(url=WHISPER_URL, status_code=400, json={"error": {"message": "Invalid file format"}})
        httpx_mock.add_response(url=f"{AZURE_URL}?language=en-US", json={"RecognitionStatus": "NoMatch"})

        async with make_service(HttpTransport(), clock) as service:
            with pytest.raises(ProvidersExhaustedError) as exc_info:
                await service.transcribe(AUDIO)

        error = exc_info.value
        assert error.provider_ids == ["google", "openai", "azure"]
        assert "Invalid file format" in error.message

    @pytest.mark.asyncio
    async def test_from_env_uses_present_credentials(self, httpx_mock: HTTPXMock) -> None:
        """Test only providers with credentials are candidates."""
        httpx_mock.add_response(url=WHISPER_URL, json={"text": "only openai"})

        async with TranscriptionService.from_env({"OPENAI_API_KEY": "o"}) as service:
            assert [p.id for p in service.operation.providers] == ["openai"]
            result = await service.transcribe(AUDIO)

        assert result.provider == "openai"

    @pytest.mark.asyncio
    async def test_no_credentials(self) -> None:
        """Test a service without credentials fails without calling anything."""
        async with TranscriptionService.from_env({}) as service:
            with pytest.raises(NoCandidatesError):
                await service.transcribe(AUDIO)
