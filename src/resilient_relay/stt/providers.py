"""
Speech-to-text provider adapters.

Each adapter performs exactly one call and translates every failure into a
ProviderError with a classified kind; retry and fallback happen above.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from resilient_relay.errors import ErrorKind, ProviderError
from resilient_relay.stt.types import Transcription
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from resilient_relay.stt.types import AudioInput
    from resilient_relay.transport import HttpTransport

logger = get_logger("resilient_relay.stt.providers")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_BASE_URL = "https://api.openai.com"


def build_transcription_prompt(language: str | None) -> str:
    """Instructions sent to generative models along with the audio."""
    if language:
        intro = f"Transcribe the following audio to text. The language of the audio is {language}."
        accents = f"Pay special attention to the specific accents and pronunciation patterns of {language}."
    else:
        intro = "Transcribe the following audio to text."
        accents = (
            "Identify the language automatically and pay attention to specific accents "
            "and pronunciation patterns."
        )
    return "\n".join(
        [
            intro,
            "",
            "Instructions:",
            f"1. {accents}",
            "2. For Vietnamese, ensure proper tone marks (dấu) are captured accurately.",
            "3. For English, note any regional accents (American, British, etc.).",
            "4. Maintain all language-specific punctuation and formatting.",
            "5. Preserve any dialect-specific expressions or colloquialisms.",
            "6. If the language is unclear or not specified, detect the language "
            "automatically and transcribe accordingly.",
            "",
            "Return only the transcription text.",
        ]
    )


class Transcriber(ABC):
    """One speech-to-text provider."""

    provider_id: str = ""

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    @abstractmethod
    async def transcribe(self, audio: AudioInput, language: str | None = None) -> Transcription:
        """Transcribe audio with this provider.

        Raises:
            ProviderError: On any failure
        """


class GeminiTranscriber(Transcriber):
    """Google Gemini ``generateContent`` with inline audio."""

    provider_id = "google"

    def __init__(
        self,
        transport: HttpTransport,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        super().__init__(transport)
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_env(cls, transport: HttpTransport, environ: Mapping[str, str] | None = None) -> GeminiTranscriber | None:
        """Create from ``GOOGLE_API_KEY``/``GEMINI_API_KEY``, or None if unset."""
        env = os.environ if environ is None else environ
        api_key = env.get("GOOGLE_API_KEY") or env.get("GEMINI_API_KEY")
        return cls(transport, api_key) if api_key else None

    async def transcribe(self, audio: AudioInput, language: str | None = None) -> Transcription:
        logger.debug("Sending audio", provider=self.provider_id, model=self._model, size=len(audio.data))
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_transcription_prompt(language)},
                        {"inline_data": {"mime_type": audio.mime_type, "data": audio.to_base64()}},
                    ],
                }
            ]
        }
        data = await self._transport.post_json(
            f"{self._base_url}/models/{self._model}:generateContent",
            provider_id=self.provider_id,
            json=body,
            headers={"x-goog-api-key": self._api_key},
        )
        text = self._extract_text(data)
        if not text:
            raise ProviderError(
                "Gemini returned no transcription",
                kind=ErrorKind.OTHER,
                provider_id=self.provider_id,
            )
        return Transcription(text=text, provider=self.provider_id, language=language)

    @staticmethod
    def _extract_text(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        for candidate in data.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
            if text.strip():
                return text.strip()
        return ""


class WhisperTranscriber(Transcriber):
    """OpenAI Whisper multipart upload."""

    provider_id = "openai"

    def __init__(
        self,
        transport: HttpTransport,
        api_key: str,
        *,
        model: str = "whisper-1",
        base_url: str = OPENAI_BASE_URL,
    ) -> None:
        super().__init__(transport)
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_env(cls, transport: HttpTransport, environ: Mapping[str, str] | None = None) -> WhisperTranscriber | None:
        """Create from ``OPENAI_API_KEY``, or None if unset."""
        env = os.environ if environ is None else environ
        api_key = env.get("OPENAI_API_KEY")
        return cls(transport, api_key) if api_key else None

    async def transcribe(self, audio: AudioInput, language: str | None = None) -> Transcription:
        logger.debug("Sending audio", provider=self.provider_id, model=self._model, size=len(audio.data))
        data: dict[str, str] = {"model": self._model}
        if language:
            # Whisper takes ISO-639-1 codes
            data["language"] = language[:2].lower()

        result = await self._transport.post_json(
            f"{self._base_url}/v1/audio/transcriptions",
            provider_id=self.provider_id,
            files={"file": (audio.filename, audio.data, audio.mime_type)},
            data=data,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        text = result.get("text") if isinstance(result, dict) else None
        if not isinstance(text, str):
            raise ProviderError(
                "Whisper response has no text",
                kind=ErrorKind.OTHER,
                provider_id=self.provider_id,
            )
        return Transcription(text=text, provider=self.provider_id, language=language)


class AzureSpeechTranscriber(Transcriber):
    """Azure Speech short-audio REST recognition."""

    provider_id = "azure"

    def __init__(
        self,
        transport: HttpTransport,
        key: str,
        region: str,
        *,
        default_language: str = "en-US",
    ) -> None:
        super().__init__(transport)
        self._key = key
        self._region = region
        self._default_language = default_language

    @classmethod
    def from_env(
        cls,
        transport: HttpTransport,
        environ: Mapping[str, str] | None = None,
    ) -> AzureSpeechTranscriber | None:
        """Create from ``AZURE_SPEECH_KEY`` and ``AZURE_SPEECH_REGION``, or None if unset."""
        env = os.environ if environ is None else environ
        key = env.get("AZURE_SPEECH_KEY")
        region = env.get("AZURE_SPEECH_REGION")
        return cls(transport, key, region) if key and region else None

    @property
    def endpoint(self) -> str:
        """Recognition endpoint for the configured region."""
        return (
            f"https://{self._region}.stt.speech.microsoft.com"
            "/speech/recognition/conversation/cognitiveservices/v1"
        )

    async def transcribe(self, audio: AudioInput, language: str | None = None) -> Transcription:
        lang = language or self._default_language
        logger.debug("Sending audio", provider=self.provider_id, region=self._region, language=lang)
        result = await self._transport.post_json(
            self.endpoint,
            provider_id=self.provider_id,
            params={"language": lang},
            content=audio.data,
            headers={
                "Ocp-Apim-Subscription-Key": self._key,
                "Content-Type": "audio/wav",
                "Accept": "application/json",
            },
        )
        if not isinstance(result, dict):
            raise ProviderError("Unexpected Azure response", kind=ErrorKind.OTHER, provider_id=self.provider_id)

        status = result.get("RecognitionStatus")
        if status != "Success":
            # NoMatch, InitialSilenceTimeout, BabbleTimeout: the audio itself is the problem
            raise ProviderError(
                f"Azure transcription failed: {status}",
                kind=ErrorKind.INVALID_REQUEST,
                provider_id=self.provider_id,
            )
        confidence = result.get("Confidence")
        return Transcription(
            text=result.get("DisplayText", ""),
            provider=self.provider_id,
            language=lang,
            confidence=float(confidence) if confidence is not None else None,
        )
