import logging

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.dependencies import get_services
from api.metrics import QUEUE_DEPTH
from api.services import Services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(services: Services = Depends(get_services)) -> dict:
    """Health check endpoint for container orchestration."""
    try:
        health = await services.health()
    except Exception as e:
        health = {"status": "degraded", "database": {"status": "error", "error": str(e)}}

    try:
        health["queue_size"] = await services.queue.get_pending_count() if services.queue else 0
    except Exception as e:
        logger.error(f"Could not read queue size: {e}")
        health["queue_size"] = 0
    return health


@router.get("/metrics")
async def metrics(services: Services = Depends(get_services)) -> Response:
    """
    Prometheus scrape endpoint.
    """
    if services.queue is not None:
        try:
            QUEUE_DEPTH.set(await services.queue.get_pending_count())
        except Exception as e:
            logger.error(f"Could not refresh queue depth: {e}")

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
