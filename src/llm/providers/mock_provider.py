from __future__ import annotations
import json
import re
from llm.providers.base import LLMProvider

_TRADE_KEYWORDS = {
    "plumber": ("toilet", "leak", "faucet", "sink", "pipe", "drain", "wax ring", "shower", "water heater"),
    "electrician": ("outlet", "switch", "wiring", "breaker", "light", "fixture", "gfci"),
    "hvac": ("hvac", "furnace", "thermostat", "vent", "air conditioning", "duct"),
    "tile": ("tile", "grout", "backsplash"),
    "flooring": ("floor", "carpet", "hardwood", "laminate"),
    "drywall": ("drywall", "hole in the wall", "patch", "crack in the wall"),
    "painter": ("paint", "touch-up", "touch up", "scuff"),
    "carpenter": ("door", "trim", "baseboard", "cabinet", "molding", "hinge"),
}

_ROOMS = (
    "bathroom", "kitchen", "bedroom", "living room", "dining room", "basement",
    "garage", "hallway", "laundry", "attic", "office", "exterior",
)

_HOURS = {"plumber": 2, "electrician": 2, "hvac": 3, "tile": 4, "flooring": 4,
          "drywall": 3, "painter": 2, "carpenter": 2, "general": 1}


def _priority(text: str) -> str:
    if any(w in text for w in ("urgent", "emergency", "asap", "flooding")):
        return "urgent"
    if "high priority" in text or "high-priority" in text:
        return "high"
    if "low priority" in text or "low-priority" in text or "whenever" in text:
        return "low"
    return "medium"


def _trade(text: str) -> str:
    for trade, words in _TRADE_KEYWORDS.items():
        if any(w in text for w in words):
            return trade
    return "general"


def _room(text: str) -> str | None:
    for room in _ROOMS:
        if room in text:
            return room
    return None


class MockProvider(LLMProvider):
    """Keyword-driven stand-in for local development without an API key."""

    name = "mock"

    def generate(self, *, system: str, user: str, model: str | None = None) -> str:
        m = re.search(r'TRANSCRIPTION:\s*"(.*)"', user, re.DOTALL)
        if not m:
            return "{}"

        transcript = m.group(1).strip()
        lowered = transcript.lower()
        priority = _priority(lowered)
        room = _room(lowered)

        items = []
        for fragment in re.split(r"[.;\n]+", transcript):
            frag = fragment.strip()
            if len(frag) < 3:
                continue
            trade = _trade(frag.lower())
            if trade == "general" and items:
                continue
            items.append(
                {
                    "item": frag,
                    "room": _room(frag.lower()) or room,
                    "trade": trade,
                    "priority": priority,
                    "estimated_hours": _HOURS[trade],
                    "notes": None,
                    "materials_needed": [],
                    "confidence_score": 0.8,
                }
            )

        return json.dumps({"items": items, "summary": transcript[:120]})
