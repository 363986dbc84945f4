from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TranscriptOutput:
    text: str
    language: Optional[str] = None
    confidence: Optional[float] = None
    duration_seconds: Optional[float] = None
    service: Optional[str] = None


class TranscriptionProvider(ABC):
    name: str = "transcription"

    @abstractmethod
    def transcribe(self, audio: bytes, *, filename: str = "audio.ogg", content_type: str = "audio/ogg") -> TranscriptOutput:
        """
        Blocking call; callers run it in a worker thread.
        """
        raise NotImplementedError


class UnconfiguredProvider(TranscriptionProvider):
    """Fails every call; used when neither hosted nor local Whisper is configured."""

    name = "unconfigured"

    def transcribe(self, audio: bytes, *, filename: str = "audio.ogg", content_type: str = "audio/ogg") -> TranscriptOutput:
        raise RuntimeError("Transcription service not configured")
