"""
Contractor scoring.

score = rating * 20 + availability bonus + budget tier bonus + urgency bonus

Pure functions only; the score is meaningful solely for ranking candidates
against each other within one request.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from renovation_advisor.models import Contractor

AVAILABILITY_BONUS = {
    "available": 25,
    "busy_2_weeks": 15,
    "busy_month": 5,
    "unavailable": 0,
}

# (contractor price_range, project budget_range) -> bonus
BUDGET_BONUS = {
    ("budget", "25-50k"): 20,
    ("budget", "50-100k"): 10,
    ("mid-range", "50-100k"): 20,
    ("mid-range", "100-250k"): 15,
    ("mid-range", "25-50k"): 10,
    ("premium", "100-250k"): 20,
    ("premium", "250k+"): 25,
}

URGENCY_BONUS = 10
RATING_WEIGHT = 20
MAX_RATING = 5.0


@dataclass(frozen=True)
class ScoringRequest:
    budget_range: Optional[str] = None
    timeline: Optional[str] = None
    trade: Optional[str] = None


@dataclass
class ScoreBreakdown:
    rating: int = 0
    availability: int = 0
    budget: int = 0
    urgency: int = 0
    reasons: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.rating + self.availability + self.budget + self.urgency


def _rating_points(rating: Optional[float]) -> int:
    if rating is None:
        return 0
    clamped = min(max(float(rating), 0.0), MAX_RATING)
    return int(round(clamped * RATING_WEIGHT))


def score_breakdown(contractor: Contractor, request: ScoringRequest) -> ScoreBreakdown:
    out = ScoreBreakdown()

    out.rating = _rating_points(contractor.rating)
    if contractor.rating is not None:
        out.reasons.append(f"{contractor.rating:.1f}/5 rating")

    availability = contractor.availability_status or "unavailable"
    out.availability = AVAILABILITY_BONUS.get(availability, 0)
    if out.availability:
        out.reasons.append(availability.replace("_", " "))

    out.budget = BUDGET_BONUS.get((contractor.price_range, request.budget_range), 0)
    if out.budget:
        out.reasons.append(f"{contractor.price_range} pricing fits {request.budget_range} budget")

    if request.timeline == "asap" and availability == "available":
        out.urgency = URGENCY_BONUS
        out.reasons.append("available for an asap timeline")

    return out


def score(contractor: Contractor, request: ScoringRequest) -> int:
    return score_breakdown(contractor, request).total
