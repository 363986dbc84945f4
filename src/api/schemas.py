"""Request bodies and inbound webhook payloads, validated at the HTTP boundary."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


PROCESS_ACTIONS = (
    "process_transcriptions",
    "process_extractions",
    "process_assignments",
    "process_sms",
    "send_reminders",
    "process_pipeline",
    "process_voice_message",
)

DIAGNOSTIC_ACTIONS = ("status", "extraction_stats", "assignment_stats", "health")

CRON_ACTIONS = (
    "process_pipeline",
    "transcriptions_only",
    "extractions_only",
    "assignments_only",
    "sms_only",
    "reminders_only",
)


class ProcessRequest(BaseModel):
    # Any string; the router answers unknown actions with 400
    action: str
    voice_message_id: Optional[str] = None
    limits: Optional[dict] = None


class CronRequest(BaseModel):
    action: str = "process_pipeline"


class ContractorMatchRequest(BaseModel):
    project_type: List[str] = Field(default_factory=list)
    budget_range: Optional[str] = None
    service_area: Optional[str] = None
    timeline: Optional[str] = None


class ManualAssignRequest(BaseModel):
    contractor_id: str
    reason: Optional[str] = None


class ResponseUpdateRequest(BaseModel):
    response: Literal["accepted", "declined", "completed"]
    notes: Optional[str] = None


# WhatsApp Cloud API envelope


class WhatsAppMedia(BaseModel):
    id: str
    mime_type: Optional[str] = None
    duration: Optional[float] = None


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_: str = Field(alias="from")
    type: str
    timestamp: Optional[str] = None
    voice: Optional[WhatsAppMedia] = None
    audio: Optional[WhatsAppMedia] = None
    text: Optional[WhatsAppText] = None

    @property
    def media(self) -> Optional[WhatsAppMedia]:
        return self.voice or self.audio

    @property
    def is_voice(self) -> bool:
        return self.type in ("voice", "audio") and self.media is not None


class WhatsAppMetadata(BaseModel):
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    messages: List[WhatsAppMessage] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: WhatsAppValue


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: List[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhook(BaseModel):
    object: str
    entry: List[WhatsAppEntry] = Field(default_factory=list)

    def messages(self) -> List[WhatsAppMessage]:
        return [m for e in self.entry for c in e.changes for m in c.value.messages]


# Twilio form post


class TwilioInbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="From")
    body: str = Field("", alias="Body")
    message_sid: Optional[str] = Field(None, alias="MessageSid")
    num_media: int = Field(0, alias="NumMedia")
    media_url: Optional[str] = Field(None, alias="MediaUrl0")
    media_content_type: Optional[str] = Field(None, alias="MediaContentType0")

    @property
    def has_audio(self) -> bool:
        return (
            self.num_media > 0
            and bool(self.media_url)
            and (self.media_content_type or "").startswith("audio/")
        )

    @property
    def channel(self) -> str:
        return "whatsapp" if self.from_.startswith("whatsapp:") else "sms"
