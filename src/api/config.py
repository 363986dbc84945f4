import logging
import os
from dataclasses import dataclass
from typing import List

from storage.db import DEFAULT_DATABASE_URL

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes"}


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL

    # LLM
    llm_provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"

    # Transcription
    use_local_whisper: bool = False
    whisper_local_url: str = "http://whisper:9000/v1"
    whisper_model: str = "whisper-1"

    # Messaging
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_whatsapp_number: str = ""
    whatsapp_access_token: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_graph_url: str = "https://graph.facebook.com/v18.0"
    admin_phone: str = ""

    # Auth
    admin_api_key: str = ""
    cron_secret_key: str = ""
    debug: bool = False

    # Background work
    pipeline_worker_enabled: bool = True
    queue_poll_interval_s: float = 5.0
    queue_retry_delay_s: int = 30
    stale_recovery_interval_s: float = 60.0
    reminder_after_minutes: int = 60
    dispatch_claim_timeout_minutes: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            llm_provider=os.getenv("LLM_PROVIDER", "openai").strip().lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip(),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").strip(),
            use_local_whisper=_flag("USE_LOCAL_WHISPER"),
            whisper_local_url=os.getenv("WHISPER_LOCAL_URL", "http://whisper:9000/v1").strip(),
            whisper_model=os.getenv("WHISPER_MODEL", "whisper-1").strip(),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", "").strip(),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", "").strip(),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", "").strip(),
            twilio_whatsapp_number=os.getenv("TWILIO_WHATSAPP_NUMBER", "").strip(),
            whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN", "").strip(),
            whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN", "").strip(),
            whatsapp_graph_url=os.getenv("WHATSAPP_GRAPH_URL", "https://graph.facebook.com/v18.0").strip(),
            admin_phone=os.getenv("ADMIN_PHONE", "").strip(),
            admin_api_key=os.getenv("ADMIN_API_KEY", "").strip(),
            cron_secret_key=os.getenv("CRON_SECRET_KEY", "").strip(),
            debug=_flag("DEBUG"),
            pipeline_worker_enabled=_flag("PIPELINE_WORKER_ENABLED", "true"),
            queue_poll_interval_s=float(os.getenv("QUEUE_POLL_INTERVAL_S", "5")),
            queue_retry_delay_s=int(os.getenv("QUEUE_RETRY_DELAY_S", "30")),
            stale_recovery_interval_s=float(os.getenv("STALE_RECOVERY_INTERVAL_S", "60")),
            reminder_after_minutes=int(os.getenv("REMINDER_AFTER_MINUTES", "60")),
            dispatch_claim_timeout_minutes=int(os.getenv("DISPATCH_CLAIM_TIMEOUT_MINUTES", "10")),
        )

    def startup_warnings(self) -> List[str]:
        warnings = []
        if self.llm_provider == "openai" and not self.openai_api_key:
            warnings.append("OPENAI_API_KEY not set; extraction falls back to the mock provider.")
        if not self.admin_api_key:
            warnings.append(
                "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                if self.debug
                else "ADMIN_API_KEY not set. Admin APIs are locked."
            )
        if not self.cron_secret_key:
            warnings.append("CRON_SECRET_KEY not set; the cron endpoint rejects every call.")
        if not (self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number):
            warnings.append("Twilio credentials incomplete; contractor SMS will not be delivered.")
        return warnings
