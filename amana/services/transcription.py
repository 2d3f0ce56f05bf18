from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from amana.logging_config import get_logger
from amana.services.llm import LLMProvider, LLMProviderError

logger = get_logger("transcription")

# Voice failure families, each with its own user-facing reply.
EMPTY_AUDIO = "empty_audio"
CORRUPTED_AUDIO = "corrupted_audio"
NETWORK = "network"
DOWNLOAD_FAILED = "download_failed"
UNKNOWN = "unknown"

VOICE_FAILURE_FAMILIES = (EMPTY_AUDIO, CORRUPTED_AUDIO, NETWORK, DOWNLOAD_FAILED, UNKNOWN)


class TranscriptionError(Exception):
    def __init__(self, message: str, family: str = UNKNOWN):
        self.message = message
        self.family = family if family in VOICE_FAILURE_FAMILIES else UNKNOWN
        super().__init__(message)


@dataclass
class Transcript:
    text: str
    language: Optional[str] = None


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, audio_bytes: bytes, filename: str = "voice.ogg", mime_type: Optional[str] = None) -> Transcript:
        """Return a non-empty transcript or raise TranscriptionError."""


class OpenAITranscriber(Transcriber):
    """Speech-to-text through the LLM provider's audio endpoint."""

    def __init__(self, provider: LLMProvider, model: str = "whisper-1", timeout_seconds: float = 30.0):
        self.provider = provider
        self.model = model
        self.timeout_seconds = timeout_seconds

    def transcribe(self, audio_bytes: bytes, filename: str = "voice.ogg", mime_type: Optional[str] = None) -> Transcript:
        if not audio_bytes:
            raise TranscriptionError("Audio payload is empty", CORRUPTED_AUDIO)

        try:
            result = self.provider.transcribe_audio(
                audio_bytes=audio_bytes,
                filename=filename,
                mime_type=mime_type,
                model=self.model,
                timeout_seconds=self.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise TranscriptionError(f"Transcription timeout: {exc}", NETWORK) from exc
        except httpx.TransportError as exc:
            raise TranscriptionError(f"Transcription network error: {exc}", NETWORK) from exc
        except LLMProviderError as exc:
            # 400 means the provider could not decode the audio.
            family = CORRUPTED_AUDIO if exc.status_code == 400 else UNKNOWN
            raise TranscriptionError(str(exc), family) from exc
        except ValueError as exc:
            # 200 with a body that is not JSON
            raise TranscriptionError(f"Unreadable transcription response: {exc}", UNKNOWN) from exc

        text = (result.get("text") or "").strip()
        if not text:
            raise TranscriptionError("Empty transcription - audio too quiet or unclear", EMPTY_AUDIO)

        logger.info(
            "Audio transcribed",
            extra={"context": {"chars": len(text), "language": result.get("language"), "bytes": len(audio_bytes)}},
        )
        return Transcript(text=text, language=result.get("language"))
