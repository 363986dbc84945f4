import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.auth import CronUnauthorized
from api.config import Settings
from api.metrics import REQUEST_LATENCY_SECONDS, REQUESTS_TOTAL
from api.routers import contractors, cron, ops, punch_list, queue, webhooks
from api.services import Services, build_services
from api.workers import pipeline_job_worker, stale_recovery_worker

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)


async def _start(app: FastAPI, services: Services) -> list:
    for warning in services.settings.startup_warnings():
        logger.warning(warning)

    await services.database.connect()
    await services.database.init_schema()

    tasks = []
    if services.settings.pipeline_worker_enabled and services.queue is not None:
        tasks.append(asyncio.create_task(pipeline_job_worker(services)))
        tasks.append(asyncio.create_task(stale_recovery_worker(services)))
        logger.info("Background pipeline workers started")
    return tasks


def endpoint_label(request: Request) -> str:
    """Route template with its router prefix, e.g. ``/api/punch-list/items/{item_id}``."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if not path:
        return request.url.path
    # Routes from include_router may report their path without the prefix
    static = path.split("{", 1)[0]
    at = request.url.path.find(static)
    return request.url.path[:at] + path if at > 0 else path


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    With ``services`` given (tests), they are used as-is and nothing is
    connected or started. Otherwise settings are read from the environment and
    the database pool and workers live for the duration of the lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        app_settings = settings or Settings.from_env()
        built = build_services(app_settings)
        app.state.settings = app_settings
        app.state.services = built
        tasks = await _start(app, built)
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await built.database.close()
            logger.info("Shutdown complete")

    app = FastAPI(title="RenovationAdvisor punch list", lifespan=lifespan)
    if services is not None:
        app.state.services = services
    if settings is not None:
        app.state.settings = settings

    @app.exception_handler(CronUnauthorized)
    async def cron_unauthorized(request: Request, exc: CronUnauthorized) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        app_services = getattr(request.app.state, "services", None)
        debug = bool(app_services and app_services.settings.debug)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(exc) if debug else "Internal server error",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    @app.middleware("http")
    async def record_request(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        # Prometheus counters (best-effort)
        try:
            endpoint = endpoint_label(request)
            REQUESTS_TOTAL.labels(endpoint=endpoint, status=str(response.status_code)).inc()
            REQUEST_LATENCY_SECONDS.labels(endpoint=endpoint).observe(time.time() - start)
        except Exception:
            pass
        return response

    app.include_router(ops.router)
    app.include_router(punch_list.router, prefix="/api/punch-list")
    app.include_router(cron.router, prefix="/api/cron")
    app.include_router(webhooks.router, prefix="/api/webhooks")
    app.include_router(contractors.router, prefix="/api/contractors")
    app.include_router(queue.router, prefix="/api/queue")
    return app


app = create_app()

