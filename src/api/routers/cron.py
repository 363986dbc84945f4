import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.auth import bearer_scheme, require_cron_secret
from api.dependencies import get_services
from api.routers.punch_list import error_response
from api.schemas import CRON_ACTIONS, CronRequest
from api.services import Services
from pipeline.orchestrator import CRON_LIMITS

router = APIRouter()
logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _run(services: Services, action: str) -> dict:
    orchestrator = services.orchestrator
    limits = CRON_LIMITS
    if action == "process_pipeline":
        return await orchestrator.run_pipeline(limits)

    single = {
        "transcriptions_only": ("transcriptions", lambda: orchestrator.process_transcriptions(limits.transcriptions)),
        "extractions_only": ("extractions", lambda: orchestrator.process_extractions(limits.extractions)),
        "assignments_only": ("assignments", lambda: orchestrator.process_assignments(limits.assignments)),
        "sms_only": ("sms", lambda: orchestrator.process_sms(limits.sms)),
        "reminders_only": ("reminders", lambda: orchestrator.send_reminders(limits.reminders)),
    }
    name, run = single[action]
    result = (await run()).to_dict()
    return {
        "stages": {name: result},
        "total_processed": result["processed"],
        "total_errors": result["errors"],
        "duration_ms": result["duration_ms"],
        "timestamp": _now(),
    }


@router.post("/punch-list", dependencies=[Depends(require_cron_secret)])
async def cron_punch_list(
    payload: Optional[CronRequest] = None,
    services: Services = Depends(get_services),
):
    """Scheduler entry point: fixed-limit sweep over every stage."""
    action = payload.action if payload is not None else "process_pipeline"
    if action not in CRON_ACTIONS:
        return error_response(400, f"Invalid action: {action}")

    logger.info(f"Cron run: {action}")
    try:
        results = await _run(services, action)
    except Exception as e:
        logger.exception(f"Cron action {action} failed: {e}")
        return error_response(500, str(e) if services.settings.debug else "Internal server error")

    return {"success": True, "action": action, "results": results, "timestamp": _now()}


@router.get("/punch-list")
async def cron_info(
    request: Request,
    check: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """``?check=health`` is open for uptime checks; anything else needs the secret."""
    if check == "health":
        return {"status": "healthy", "service": "punch-list-cron", "timestamp": _now()}

    credentials = await bearer_scheme(request)
    await require_cron_secret(request, credentials, services.settings)
    return {
        "service": "punch-list-cron",
        "actions": list(CRON_ACTIONS),
        "limits": asdict(CRON_LIMITS),
        "timestamp": _now(),
    }
