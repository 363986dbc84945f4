import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.auth import require_admin_token
from api.dependencies import get_services
from api.schemas import (
    DIAGNOSTIC_ACTIONS,
    PROCESS_ACTIONS,
    ManualAssignRequest,
    ProcessRequest,
    ResponseUpdateRequest,
)
from api.services import Services
from messaging.reply_parser import EXPECTED_PRIOR
from pipeline.orchestrator import PipelineLimits
from renovation_advisor.errors import NotFoundError

router = APIRouter(dependencies=[Depends(require_admin_token)])
logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "timestamp": _now()},
    )


async def _run_action(services: Services, payload: ProcessRequest) -> dict:
    orchestrator = services.orchestrator
    limits = PipelineLimits.from_dict(payload.limits)
    action = payload.action

    if action == "process_transcriptions":
        return (await orchestrator.process_transcriptions(limits.transcriptions)).to_dict()
    if action == "process_extractions":
        return (await orchestrator.process_extractions(limits.extractions)).to_dict()
    if action == "process_assignments":
        return (await orchestrator.process_assignments(limits.assignments)).to_dict()
    if action == "process_sms":
        return (await orchestrator.process_sms(limits.sms)).to_dict()
    if action == "send_reminders":
        return (await orchestrator.send_reminders(limits.reminders)).to_dict()
    if action == "process_pipeline":
        return await orchestrator.run_pipeline(limits)
    return await orchestrator.process_voice_message(payload.voice_message_id)


@router.post("/process")
async def process(payload: ProcessRequest, services: Services = Depends(get_services)):
    """Run one pipeline stage, the full sweep, or a single voice message."""
    if payload.action not in PROCESS_ACTIONS:
        return error_response(400, f"Invalid action: {payload.action}")
    if payload.action == "process_voice_message" and not payload.voice_message_id:
        return error_response(400, "voice_message_id is required for process_voice_message")

    try:
        results = await _run_action(services, payload)
    except Exception as e:
        logger.exception(f"Punch list action {payload.action} failed: {e}")
        return error_response(500, str(e) if services.settings.debug else "Internal server error")

    return {"success": True, "action": payload.action, "results": results, "timestamp": _now()}


@router.get("/process")
async def diagnostics(action: str = "status", services: Services = Depends(get_services)):
    """Read-only counters for the dashboard."""
    if action not in DIAGNOSTIC_ACTIONS:
        return error_response(400, f"Invalid action: {action}")

    try:
        if action == "status":
            results = {
                "voice_messages": await services.voice_store.status_counts(),
                "punch_list_items": await services.punch_list_store.item_status_counts(),
                "assignments": await services.punch_list_store.assignment_stats(),
            }
        elif action == "extraction_stats":
            results = await services.punch_list_store.extraction_stats()
        elif action == "assignment_stats":
            results = await services.punch_list_store.assignment_stats()
        else:
            results = await services.health()
    except Exception as e:
        logger.exception(f"Diagnostics {action} failed: {e}")
        return error_response(500, str(e) if services.settings.debug else "Internal server error")

    return {"success": True, "action": action, "results": results, "timestamp": _now()}


@router.get("/items")
async def list_items(
    project_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    services: Services = Depends(get_services),
) -> dict:
    items = await services.punch_list_store.list_items(project_id=project_id, status=status, limit=limit)
    return {"items": [i.model_dump(mode="json") for i in items], "count": len(items)}


@router.get("/assignments")
async def list_assignments(
    project_id: Optional[str] = None,
    response: Optional[str] = None,
    limit: int = 50,
    services: Services = Depends(get_services),
) -> dict:
    assignments = await services.punch_list_store.list_assignments(
        project_id=project_id, response=response, limit=limit
    )
    return {"assignments": [a.model_dump(mode="json") for a in assignments], "count": len(assignments)}


@router.post("/items/{item_id}/assign")
async def assign_item(
    item_id: str,
    payload: ManualAssignRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Manual assignment, bypassing the scorer."""
    try:
        assignment = await services.selector.assign_manually(item_id, payload.contractor_id, payload.reason)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if assignment is None:
        raise HTTPException(status_code=409, detail="Item already has an active assignment")
    return {"success": True, "assignment": assignment.model_dump(mode="json")}


@router.post("/assignments/{assignment_id}/response")
async def record_response(
    assignment_id: str,
    payload: ResponseUpdateRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Record a contractor response on their behalf (phone call, email)."""
    store = services.punch_list_store
    current = await store.get_assignment(assignment_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Assignment not found")
    if current.contractor_response not in EXPECTED_PRIOR[payload.response]:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move assignment from {current.contractor_response} to {payload.response}",
        )

    updated = await store.update_response(
        assignment_id, current.contractor_response, payload.response, notes=payload.notes
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Assignment changed concurrently, retry")
    logger.info(f"Admin recorded {payload.response} on assignment {assignment_id}")
    return {"success": True, "assignment": updated.model_dump(mode="json")}
