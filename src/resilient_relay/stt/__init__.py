"""
STT (Speech-to-Text) module.

Provides resilient transcription with fallback across Google Gemini,
OpenAI Whisper and Azure Speech.
"""

from resilient_relay.stt.providers import (
    AzureSpeechTranscriber,
    GeminiTranscriber,
    Transcriber,
    WhisperTranscriber,
    build_transcription_prompt,
)
from resilient_relay.stt.service import TranscriptionService
from resilient_relay.stt.types import AudioInput, Transcription

__all__ = [
    "AudioInput",
    "AzureSpeechTranscriber",
    "GeminiTranscriber",
    "Transcriber",
    "Transcription",
    "TranscriptionService",
    "WhisperTranscriber",
    "build_transcription_prompt",
]
