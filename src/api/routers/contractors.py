import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_services
from api.schemas import ContractorMatchRequest
from api.services import Services
from assignment.assignment_selector import filter_candidates, rank
from assignment.contractor_scorer import ScoringRequest

router = APIRouter()
logger = logging.getLogger(__name__)

MATCH_LIMIT = 5


@router.post("/match")
async def match_contractors(payload: ContractorMatchRequest, services: Services = Depends(get_services)):
    """Best contractors for a project type, budget and city."""
    project_types = [t for t in payload.project_type if t and t.strip()]
    if not (project_types and payload.budget_range and payload.service_area):
        return JSONResponse(
            status_code=400,
            content={"error": "project_type, budget_range and service_area are required"},
        )

    contractors = await services.contractor_store.list_active()
    candidates = filter_candidates(contractors, project_types, payload.service_area)
    ranked = rank(
        candidates,
        ScoringRequest(budget_range=payload.budget_range, timeline=payload.timeline),
    )[:MATCH_LIMIT]

    logger.info(
        f"Contractor match for {project_types} in {payload.service_area}: "
        f"{len(candidates)} candidate(s), returning {len(ranked)}"
    )
    return {"contractors": [r.to_dict() for r in ranked], "count": len(ranked)}
