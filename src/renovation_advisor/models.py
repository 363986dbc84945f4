from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, List

from pydantic import BaseModel, Field, field_validator


VoiceMessageStatus = Literal["received", "transcribing", "transcribed", "failed"]
PunchListItemStatus = Literal["extracted", "pending", "assigned", "completed"]
Priority = Literal["urgent", "high", "medium", "low"]
AssignmentMethod = Literal["algorithm", "manual"]
ContractorResponse = Literal["pending", "accepted", "declined", "completed"]
PriceRange = Literal["budget", "mid-range", "premium"]
AvailabilityStatus = Literal["available", "busy_2_weeks", "busy_month", "unavailable"]

PRIORITIES: tuple = ("urgent", "high", "medium", "low")

# Lower rank is processed first
PRIORITY_RANK = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


class Contractor(BaseModel):
    id: str
    business_name: str
    phone: Optional[str] = None
    specialties: List[str] = Field(default_factory=list)
    service_areas: List[str] = Field(default_factory=list)
    price_range: Optional[str] = None
    availability_status: Optional[str] = None
    rating: Optional[float] = None
    is_active: bool = True

    @field_validator("specialties", "service_areas", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str = "homeowner"


class Project(BaseModel):
    id: str
    homeowner_id: str
    title: str = "Renovation project"
    city: Optional[str] = None
    budget_range: Optional[str] = None
    timeline: Optional[str] = None
    status: str = "planning"


class VoiceMessage(BaseModel):
    id: str
    project_id: str
    sender_id: str
    audio_url: str
    duration_seconds: Optional[float] = None
    whatsapp_message_id: Optional[str] = None
    status: VoiceMessageStatus = "received"
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VoiceTranscription(BaseModel):
    voice_message_id: str
    transcription_text: str
    confidence_score: Optional[float] = None
    language: Optional[str] = None
    processing_time_ms: Optional[int] = None
    service_name: str = "whisper-openai"
    created_at: Optional[datetime] = None


class PendingExtraction(BaseModel):
    """A transcribed voice message that has not been through extraction yet."""

    voice_message_id: str
    project_id: str
    transcription_text: str


class PunchListItem(BaseModel):
    id: str
    project_id: str
    voice_message_id: Optional[str] = None
    description: str = Field(..., min_length=1)
    room: Optional[str] = None
    trade_category: str = "general"
    priority: Priority = "medium"
    estimated_hours: Optional[float] = None
    notes: Optional[str] = None
    materials_needed: List[str] = Field(default_factory=list)
    confidence_score: Optional[float] = None
    status: PunchListItemStatus = "extracted"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("materials_needed", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class PunchListAssignment(BaseModel):
    id: str
    punch_list_item_id: str
    contractor_id: str
    project_id: str
    assignment_method: AssignmentMethod = "algorithm"
    assignment_reason: str = ""
    contractor_response: ContractorResponse = "pending"
    contractor_notes: Optional[str] = None
    sms_message_id: Optional[str] = None
    sms_status: Optional[str] = None
    sent_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.contractor_response != "declined"
