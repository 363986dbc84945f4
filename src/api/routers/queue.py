import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.auth import require_admin_token
from api.dependencies import get_durable_queue
from storage.durable_queue import DurableQueue, PipelineJob

router = APIRouter(dependencies=[Depends(require_admin_token)])
logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _require_queue(durable_queue: Optional[DurableQueue]) -> DurableQueue:
    if durable_queue is None:
        raise HTTPException(status_code=503, detail="Pipeline job queue not available")
    return durable_queue


def _summary(job: PipelineJob) -> dict:
    return {
        "id": job.id,
        "voice_message_id": job.voice_message_id,
        "source": job.source,
        "status": job.status,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "last_error": job.last_error,
        "created_at": _iso(job.created_at),
        "completed_at": _iso(job.completed_at),
    }


@router.get("")
async def queue_status(durable_queue: Optional[DurableQueue] = Depends(get_durable_queue)) -> dict:
    """Job counts per status."""
    queue = _require_queue(durable_queue)
    try:
        stats = await queue.get_stats()
    except Exception as e:
        logger.error(f"Error getting queue stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    by_status = stats["by_status"]
    return {
        "queue_size": by_status.get("pending", {}).get("count", 0),
        "processing": by_status.get("processing", {}).get("count", 0),
        "completed": by_status.get("completed", {}).get("count", 0),
        "failed": by_status.get("failed", {}).get("count", 0),
        "dead": by_status.get("dead", {}).get("count", 0),
        "total": stats["total"],
    }


@router.get("/items")
async def get_queue_items(
    limit: int = 20,
    status: Optional[str] = None,
    durable_queue: Optional[DurableQueue] = Depends(get_durable_queue),
) -> dict:
    """
    Recent pipeline jobs.

    Args:
        limit: Maximum number of jobs to return (default 20)
        status: Filter by status (pending, processing, completed, failed, dead)
    """
    jobs = await _require_queue(durable_queue).get_recent_jobs(limit=limit, status=status)
    return {"items": [_summary(j) for j in jobs], "count": len(jobs)}


@router.get("/items/{job_id}")
async def get_queue_item(
    job_id: str, durable_queue: Optional[DurableQueue] = Depends(get_durable_queue)
) -> dict:
    job = await _require_queue(durable_queue).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Queue item not found")

    return {
        **_summary(job),
        "updated_at": _iso(job.updated_at),
        "processing_started_at": _iso(job.processing_started_at),
        "worker_id": job.worker_id,
        "result": job.result,
    }


@router.get("/dead")
async def get_dead_letter_items(
    limit: int = 50, durable_queue: Optional[DurableQueue] = Depends(get_durable_queue)
) -> dict:
    """Jobs that failed after max retries."""
    jobs = await _require_queue(durable_queue).get_dead_letter_jobs(limit=limit)
    return {"items": [_summary(j) for j in jobs], "count": len(jobs)}


@router.post("/items/{job_id}/retry")
async def retry_dead_item(
    job_id: str, durable_queue: Optional[DurableQueue] = Depends(get_durable_queue)
) -> dict:
    if not await _require_queue(durable_queue).retry_dead_job(job_id):
        raise HTTPException(status_code=400, detail="Item not found or not in dead status")
    return {"status": "success", "message": f"Job {job_id} has been reset to pending"}


@router.post("/purge")
async def purge_completed_items(
    older_than_hours: int = 24,
    durable_queue: Optional[DurableQueue] = Depends(get_durable_queue),
) -> dict:
    count = await _require_queue(durable_queue).purge_completed(older_than_hours=older_than_hours)
    return {"status": "success", "purged_count": count, "older_than_hours": older_than_hours}


@router.delete("/items/{job_id}")
async def delete_queue_item(
    job_id: str, durable_queue: Optional[DurableQueue] = Depends(get_durable_queue)
) -> dict:
    if not await _require_queue(durable_queue).delete_job(job_id):
        raise HTTPException(status_code=404, detail="Item not found or could not be deleted")
    return {"status": "deleted", "id": job_id}
