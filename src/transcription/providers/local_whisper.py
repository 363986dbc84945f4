from __future__ import annotations
import logging
from typing import Optional

import httpx

from .base import TranscriptionProvider, TranscriptOutput

logger = logging.getLogger(__name__)


class LocalWhisperProvider(TranscriptionProvider):
    """
    Self-hosted Whisper HTTP service (OpenAI-compatible ``/audio/transcriptions``).

    When the local service errors and a ``fallback`` provider is configured, the
    audio is sent to the fallback instead and its result is returned.
    """

    name = "whisper-local"

    def __init__(
        self,
        base_url: str,
        model: str = "base",
        language: str = "en",
        timeout_s: float = 120.0,
        fallback: Optional[TranscriptionProvider] = None,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.model = model
        self.language = language
        self.timeout_s = timeout_s
        self.fallback = fallback

    def transcribe(self, audio: bytes, *, filename: str = "audio.ogg", content_type: str = "audio/ogg") -> TranscriptOutput:
        try:
            return self._transcribe_local(audio, filename=filename, content_type=content_type)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            if self.fallback is None:
                raise
            logger.warning(f"Local Whisper failed ({e}), falling back to {self.fallback.name}")
            return self.fallback.transcribe(audio, filename=filename, content_type=content_type)

    def _transcribe_local(self, audio: bytes, *, filename: str, content_type: str) -> TranscriptOutput:
        url = f"{self.base_url}/audio/transcriptions"
        data = {"model": self.model, "language": self.language, "response_format": "json"}
        files = {"file": (filename, audio, content_type)}

        with httpx.Client(timeout=self.timeout_s) as client:
            r = client.post(url, data=data, files=files)
            r.raise_for_status()
            body = r.json()

        return TranscriptOutput(
            text=(body["text"] or "").strip(),
            language=body.get("language") or self.language,
            confidence=body.get("confidence", 0.8),
            duration_seconds=body.get("duration"),
            service=self.name,
        )
