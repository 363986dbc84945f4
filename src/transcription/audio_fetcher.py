import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

from renovation_advisor.errors import TranscriptionError, is_transient

logger = logging.getLogger(__name__)

# Voice messages received through the WhatsApp Cloud API are stored as a media
# reference and resolved through the Graph API at transcription time.
WHATSAPP_MEDIA_SCHEME = "whatsapp-media:"

_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/amr": "amr",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


@dataclass(frozen=True)
class FetchedAudio:
    content: bytes
    content_type: str
    filename: str


def whatsapp_media_ref(media_id: str) -> str:
    return f"{WHATSAPP_MEDIA_SCHEME}{media_id}"


class AudioFetcher:
    """Downloads voice message audio. Blocking; run it with ``asyncio.to_thread``."""

    def __init__(
        self,
        whatsapp_access_token: str = "",
        whatsapp_graph_url: str = "https://graph.facebook.com/v18.0",
        twilio_account_sid: str = "",
        twilio_auth_token: str = "",
        timeout_s: float = 30.0,
    ):
        self.whatsapp_access_token = whatsapp_access_token
        self.whatsapp_graph_url = whatsapp_graph_url.rstrip("/")
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.timeout_s = timeout_s

    def fetch(self, audio_url: str) -> FetchedAudio:
        try:
            if audio_url.startswith(WHATSAPP_MEDIA_SCHEME):
                resp = self._fetch_whatsapp_media(audio_url[len(WHATSAPP_MEDIA_SCHEME):])
            elif self._is_twilio(audio_url):
                resp = requests.get(
                    audio_url,
                    auth=(self.twilio_account_sid, self.twilio_auth_token),
                    timeout=self.timeout_s,
                )
            else:
                resp = requests.get(audio_url, timeout=self.timeout_s)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TranscriptionError(f"Failed to download audio: {e}", retryable=is_transient(e)) from e

        if not resp.content:
            raise TranscriptionError("Downloaded audio is empty")

        content_type = (resp.headers.get("Content-Type") or "audio/ogg").split(";")[0].strip()
        ext = _EXTENSIONS.get(content_type, "ogg")
        return FetchedAudio(content=resp.content, content_type=content_type, filename=f"audio.{ext}")

    def _fetch_whatsapp_media(self, media_id: str) -> requests.Response:
        if not self.whatsapp_access_token:
            raise TranscriptionError("WHATSAPP_ACCESS_TOKEN is missing")
        headers = {"Authorization": f"Bearer {self.whatsapp_access_token}"}

        meta = requests.get(f"{self.whatsapp_graph_url}/{media_id}", headers=headers, timeout=self.timeout_s)
        meta.raise_for_status()
        media_url: Optional[str] = meta.json().get("url")
        if not media_url:
            raise TranscriptionError(f"No media URL for WhatsApp media {media_id}")

        logger.info(f"Resolved WhatsApp media {media_id}")
        return requests.get(media_url, headers=headers, timeout=self.timeout_s)

    def _is_twilio(self, audio_url: str) -> bool:
        host = urlparse(audio_url).hostname or ""
        return bool(self.twilio_account_sid) and host.endswith("twilio.com")
