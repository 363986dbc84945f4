import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from assignment.contractor_scorer import ScoreBreakdown, ScoringRequest, score_breakdown
from pipeline.stage import PROCESSED, SKIPPED, StageResult, run_items
from renovation_advisor.errors import NotFoundError
from renovation_advisor.models import Contractor, Project, PunchListAssignment, PunchListItem
from storage.contractor_store import ContractorStore
from storage.project_store import ProjectStore
from storage.punch_list_store import PunchListStore

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"

# Contractor specialties accepted for each trade; "general" qualifies for every trade
TRADE_SPECIALTIES = {
    "plumber": {"plumber", "plumbing"},
    "electrician": {"electrician", "electrical"},
    "carpenter": {"carpenter", "carpentry", "trim", "doors"},
    "painter": {"painter", "painting"},
    "hvac": {"hvac"},
    "tile": {"tile", "tiling"},
    "drywall": {"drywall"},
    "flooring": {"flooring", "tile"},
    "general": set(),
}


def normalize_specialty(value: str) -> str:
    s = value.strip().lower().replace("renovation", "")
    return "_".join(s.split()).strip("_")


def accepted_specialties(trade: str) -> set:
    """Specialties that qualify for ``trade``; an alias ("plumbing") resolves like its trade."""
    t = normalize_specialty(trade)
    accepted = {t, "general"}
    for name, aliases in TRADE_SPECIALTIES.items():
        if t == name or t in aliases:
            accepted |= {name} | aliases
    return accepted


def scoring_request_for(item: PunchListItem, project: Optional[Project]) -> ScoringRequest:
    timeline = project.timeline if project else None
    if item.priority == "urgent":
        timeline = "asap"
    return ScoringRequest(
        budget_range=project.budget_range if project else None,
        timeline=timeline,
        trade=item.trade_category,
    )


def filter_candidates(
    contractors: Iterable[Contractor],
    trades: Sequence[str],
    city: Optional[str],
    exclude: Iterable[str] = (),
) -> List[Contractor]:
    """Active contractors with a matching specialty who serve ``city``."""
    wanted = set()
    for trade in trades:
        wanted |= accepted_specialties(trade)
    excluded = set(exclude)
    area = city.strip().lower() if city else None

    out = []
    for c in contractors:
        if not c.is_active or c.id in excluded:
            continue
        if not wanted & {normalize_specialty(s) for s in c.specialties}:
            continue
        if area is not None and area not in {a.strip().lower() for a in c.service_areas}:
            continue
        out.append(c)
    return out


@dataclass
class RankedContractor:
    contractor: Contractor
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total

    def to_dict(self) -> dict:
        return {
            **self.contractor.model_dump(),
            "match_score": self.score,
            "match_reasons": list(self.breakdown.reasons),
        }


def rank(contractors: Iterable[Contractor], request: ScoringRequest) -> List[RankedContractor]:
    ranked = [RankedContractor(c, score_breakdown(c, request)) for c in contractors]
    # sorted() is stable: equal scores keep input order
    return sorted(ranked, key=lambda r: r.score, reverse=True)


def build_reason(choice: RankedContractor, item: PunchListItem, candidates: int) -> str:
    factors = ", ".join(choice.breakdown.reasons) or "only qualified contractor"
    return (
        f"Best of {candidates} {item.trade_category} candidate(s): {factors} "
        f"(score {choice.score})"
    )


class AssignmentSelector:
    """Assignment stage: extracted/pending items get one pending contractor assignment."""

    stage = "assign"

    def __init__(
        self,
        punch_list_store: PunchListStore,
        contractor_store: ContractorStore,
        project_store: ProjectStore,
    ):
        self.punch_list_store = punch_list_store
        self.contractor_store = contractor_store
        self.project_store = project_store

    async def select(
        self,
        item: PunchListItem,
        project: Optional[Project],
        contractors: Sequence[Contractor],
        top_n: int = 1,
    ) -> List[RankedContractor]:
        exclude = await self.punch_list_store.declined_contractor_ids(item.id)
        candidates = filter_candidates(
            contractors, [item.trade_category], project.city if project else None, exclude
        )
        return rank(candidates, scoring_request_for(item, project))[:top_n]

    async def process_pending(self, limit: int) -> StageResult:
        items = await self.punch_list_store.list_assignable(limit)
        if not items:
            return StageResult(stage=self.stage)

        contractors = await self.contractor_store.list_active()
        projects: Dict[str, Optional[Project]] = {}

        async def _assign(item: PunchListItem):
            if item.project_id not in projects:
                projects[item.project_id] = await self.project_store.get_project(item.project_id)
            return await self._assign(item, projects[item.project_id], contractors)

        return await run_items(self.stage, items, _assign)

    async def _assign(self, item: PunchListItem, project: Optional[Project], contractors: Sequence[Contractor]):
        candidates = await self.select(item, project, contractors, top_n=len(contractors) or 1)
        if not candidates:
            logger.info(f"No qualified contractor for item {item.id} ({item.trade_category}), retrying next run")
            await self.punch_list_store.mark_pending(item.id)
            return UNASSIGNED

        choice = candidates[0]
        reason = build_reason(choice, item, len(candidates))
        assignment = await self.punch_list_store.create_assignment(
            item, choice.contractor.id, "algorithm", reason
        )
        if assignment is None:
            logger.warning(f"Item {item.id} was assigned by another run, skipping")
            return SKIPPED

        logger.info(f"Assigned item {item.id} to {choice.contractor.business_name} (score {choice.score})")
        return PROCESSED, {"assignment_id": assignment.id, "contractor_id": choice.contractor.id, "score": choice.score}

    async def assign_manually(
        self,
        item_id: str,
        contractor_id: str,
        reason: Optional[str] = None,
    ) -> Optional[PunchListAssignment]:
        """
        Admin override. Raises NotFoundError for unknown ids; returns None when
        the item already holds an active assignment.
        """
        item = await self.punch_list_store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Punch list item {item_id} not found")
        contractor = await self.contractor_store.get_contractor(contractor_id)
        if contractor is None:
            raise NotFoundError(f"Contractor {contractor_id} not found")

        assignment = await self.punch_list_store.create_assignment(
            item,
            contractor.id,
            "manual",
            reason or "Manually assigned by project administrator",
        )
        if assignment is not None:
            logger.info(f"Manually assigned item {item.id} to {contractor.business_name}")
        return assignment
