from __future__ import annotations
import httpx
from .base import TranscriptionProvider, TranscriptOutput

# Whisper reports no confidence; hosted results are treated as high quality
DEFAULT_CONFIDENCE = 0.95


class OpenAIWhisperProvider(TranscriptionProvider):
    name = "whisper-openai"

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        language: str = "en",
        timeout_s: float = 60.0,
    ):
        self.api_key = api_key.strip()
        self.model = model.strip()
        self.base_url = base_url.strip().rstrip("/")
        self.language = language
        self.timeout_s = timeout_s

        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is missing")

    def transcribe(self, audio: bytes, *, filename: str = "audio.ogg", content_type: str = "audio/ogg") -> TranscriptOutput:
        url = f"{self.base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = {
            "model": self.model,
            "language": self.language,
            "response_format": "verbose_json",
        }
        files = {"file": (filename, audio, content_type)}

        with httpx.Client(timeout=self.timeout_s) as client:
            r = client.post(url, headers=headers, data=data, files=files)
            r.raise_for_status()
            body = r.json()

        return TranscriptOutput(
            text=(body.get("text") or "").strip(),
            language=body.get("language") or self.language,
            confidence=DEFAULT_CONFIDENCE,
            duration_seconds=body.get("duration"),
            service=self.name,
        )
