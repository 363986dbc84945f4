import asyncio
import logging

from api.services import Services

logger = logging.getLogger(__name__)

STALE_JOB_TIMEOUT_MINUTES = 5


async def run_next_job(services: Services) -> bool:
    """Dequeue and run one pipeline job. Returns False when the queue is empty."""
    job = await services.queue.dequeue()
    if job is None:
        return False

    logger.info(f"Processing job {job.id} for voice message {job.voice_message_id} (attempt {job.attempts})")
    try:
        result = await services.orchestrator.process_voice_message(job.voice_message_id)
    except Exception as e:
        logger.exception(f"Failed to process job {job.id}: {e}")
        await _fail(services, job.id, str(e))
        return True

    if result.get("retry_reason"):
        await _fail(services, job.id, result["retry_reason"])
    else:
        await services.queue.complete(job.id, result)
        logger.info(f"Successfully processed job {job.id}")
    return True


async def _fail(services: Services, job_id: str, error: str) -> None:
    new_status = await services.queue.fail(job_id, error, retry_delay_s=services.settings.queue_retry_delay_s)
    if new_status == "dead":
        logger.error(f"Job {job_id} moved to dead letter queue after max retries")


async def pipeline_job_worker(services: Services) -> None:
    """Background worker that drains the pipeline job queue."""
    logger.info("Pipeline job worker started")
    interval = services.settings.queue_poll_interval_s

    while True:
        try:
            if not await run_next_job(services):
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Error in pipeline job worker: {e}")
            await asyncio.sleep(interval)


async def stale_recovery_worker(services: Services) -> None:
    """Periodically recover jobs stuck in processing state."""
    logger.info("Stale recovery worker started")

    while True:
        await asyncio.sleep(services.settings.stale_recovery_interval_s)
        try:
            recovered = await services.queue.recover_stale(timeout_minutes=STALE_JOB_TIMEOUT_MINUTES)
            if recovered > 0:
                logger.warning(f"Recovered {recovered} stale jobs")
        except Exception as e:
            logger.error(f"Error in stale recovery worker: {e}")
