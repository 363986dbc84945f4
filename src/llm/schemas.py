from __future__ import annotations
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

TRADES = (
    "plumber",
    "electrician",
    "carpenter",
    "painter",
    "general",
    "hvac",
    "tile",
    "drywall",
    "flooring",
)

# Common LLM spellings folded onto the trade vocabulary
_TRADE_ALIASES = {
    "plumbing": "plumber",
    "electrical": "electrician",
    "electric": "electrician",
    "carpentry": "carpenter",
    "trim": "carpenter",
    "doors": "carpenter",
    "painting": "painter",
    "paint": "painter",
    "tiling": "tile",
    "floor": "flooring",
    "floors": "flooring",
    "heating": "hvac",
}


class ExtractedPunchListItem(BaseModel):
    item: str = Field(..., min_length=3)
    room: Optional[str] = None
    trade: str = "general"
    priority: str = "medium"
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    materials_needed: List[str] = Field(default_factory=list)
    confidence_score: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator("trade", mode="before")
    @classmethod
    def normalize_trade(cls, v) -> str:
        t = str(v or "general").strip().lower()
        t = _TRADE_ALIASES.get(t, t)
        return t if t in TRADES else "general"

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v) -> str:
        p = str(v or "medium").strip().lower()
        return p if p in {"urgent", "high", "medium", "low"} else "medium"

    @field_validator("materials_needed", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class PunchListExtractionResult(BaseModel):
    items: List[ExtractedPunchListItem] = Field(default_factory=list)
    summary: str = ""
