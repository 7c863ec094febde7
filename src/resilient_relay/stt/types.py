"""
Speech-to-text input and output types.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from resilient_relay.errors import ErrorKind, ProviderError

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[^,;]+=[^,;]*)*;base64,(?P<data>.*)$", re.DOTALL)

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "video/mp4": "mp4",
    "video/webm": "webm",
}


@dataclass(frozen=True)
class AudioInput:
    """Audio to transcribe.

    Attributes:
        data: Raw audio bytes
        mime_type: Audio MIME type
    """

    data: bytes
    mime_type: str = "audio/webm"

    @classmethod
    def from_data_uri(cls, uri: str) -> AudioInput:
        """Parse a ``data:<mime>;base64,<data>`` URI.

        Raises:
            ProviderError: If the URI is malformed (kind ``invalid_request``)
        """
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            raise ProviderError(
                "Audio must be a data URI of the form 'data:<mimetype>;base64,<encoded_data>'",
                kind=ErrorKind.INVALID_REQUEST,
            )
        try:
            data = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(
                "Audio data URI is not valid base64",
                kind=ErrorKind.INVALID_REQUEST,
                cause=e,
            ) from e
        if not data:
            raise ProviderError("Audio data is empty", kind=ErrorKind.INVALID_REQUEST)
        return cls(data=data, mime_type=match.group("mime").lower())

    @property
    def extension(self) -> str:
        """File extension matching the MIME type."""
        return _EXTENSIONS.get(self.mime_type, "webm")

    @property
    def filename(self) -> str:
        """Upload filename for multipart APIs."""
        return f"audio.{self.extension}"

    def to_base64(self) -> str:
        """Base64-encode the audio bytes."""
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class Transcription:
    """Transcription result.

    Attributes:
        text: Transcribed text
        provider: Provider that produced it
        language: Language hint the provider was given
        confidence: Confidence score, if the provider reports one
    """

    text: str
    provider: str
    language: str | None = None
    confidence: float | None = None
