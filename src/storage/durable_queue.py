"""
Durable Queue module for RenovationAdvisor.

Provides a PostgreSQL-backed queue of pipeline jobs. Each inbound voice
message enqueues one job; a background worker drains the queue by running the
pipeline for that message. Delivery is at-least-once: a job that fails is
returned to 'pending' until it exhausts max_attempts, then parked as 'dead'.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from storage.db import Database, affected_rows

logger = logging.getLogger(__name__)


@dataclass
class PipelineJob:
    """Represents a job in the durable queue."""
    id: str
    voice_message_id: str
    source: str
    status: str
    attempts: int
    max_attempts: int
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime
    processing_started_at: Optional[datetime]
    completed_at: Optional[datetime]
    worker_id: Optional[str]
    result: Optional[dict]

    @classmethod
    def from_record(cls, record) -> "PipelineJob":
        """Create a PipelineJob from a database record."""
        result = record["result"]
        if isinstance(result, str):
            result = json.loads(result)
        return cls(
            id=str(record["id"]),
            voice_message_id=str(record["voice_message_id"]),
            source=record["source"],
            status=record["status"],
            attempts=record["attempts"],
            max_attempts=record["max_attempts"],
            last_error=record["last_error"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            processing_started_at=record["processing_started_at"],
            completed_at=record["completed_at"],
            worker_id=record["worker_id"],
            result=result,
        )


@dataclass
class DequeueResult:
    """Result from dequeuing a job."""
    id: str
    voice_message_id: str
    attempts: int


class DurableQueue:
    """
    PostgreSQL-backed durable queue for pipeline jobs.

    Features:
    - Persistent storage (survives pod restarts)
    - Atomic dequeue operations (safe for multiple workers)
    - Retry logic with configurable max attempts
    - Dead letter status for jobs that keep failing
    - Status tracking and monitoring
    """

    def __init__(self, database: Database, worker_id: Optional[str] = None):
        """
        Args:
            database: Connected Database wrapper.
            worker_id: Unique identifier for this worker instance.
                      If not provided, a UUID will be generated.
        """
        self.database = database
        self.worker_id = worker_id or str(uuid.uuid4())[:8]
        logger.info(f"DurableQueue initialized with worker_id: {self.worker_id}")

    async def enqueue(
        self,
        voice_message_id: str,
        source: str = "webhook",
        max_attempts: int = 3,
    ) -> str:
        """
        Add a pipeline job for a voice message.

        Returns:
            The UUID of the queued job
        """
        query = """
            INSERT INTO pipeline_jobs (voice_message_id, source, max_attempts)
            VALUES ($1, $2, $3)
            RETURNING id
        """

        job_id = await self.database.fetchval(
            query, uuid.UUID(voice_message_id), source, max_attempts
        )

        logger.info(f"Enqueued pipeline job {job_id} for voice message {voice_message_id}")
        return str(job_id)

    async def dequeue(self) -> Optional[DequeueResult]:
        """
        Atomically dequeue the next pending job.

        Uses PostgreSQL's SELECT FOR UPDATE SKIP LOCKED for safe
        concurrent access by multiple workers.
        """
        record = await self.database.fetchrow(
            "SELECT * FROM dequeue_job($1)", self.worker_id
        )

        if record is None or record["job_id"] is None:
            return None

        result = DequeueResult(
            id=str(record["job_id"]),
            voice_message_id=str(record["job_voice_message_id"]),
            attempts=record["job_attempts"],
        )

        logger.info(f"Dequeued job {result.id} (attempt {result.attempts})")
        return result

    async def complete(self, job_id: str, result: dict) -> bool:
        """Mark a job as successfully completed and store its result as JSON."""
        success = await self.database.fetchval(
            "SELECT complete_job($1, $2)",
            uuid.UUID(job_id),
            json.dumps(result, default=str),
        )

        if success:
            logger.info(f"Completed job {job_id}")
        else:
            logger.warning(f"Failed to complete job {job_id} (not in processing state?)")

        return bool(success)

    async def fail(self, job_id: str, error: str, retry_delay_s: int = 30) -> str:
        """
        Mark a job as failed.

        A job going back to 'pending' is held for ``retry_delay_s`` times its
        attempt count before the next dequeue can pick it up.

        Returns:
            The new status ('pending' for retry, 'dead' if max attempts exceeded)
        """
        new_status = await self.database.fetchval(
            "SELECT fail_job($1, $2, $3)", uuid.UUID(job_id), error, retry_delay_s
        )

        logger.warning(f"Failed job {job_id}: {error} (new status: {new_status})")
        return new_status

    async def recover_stale(self, timeout_minutes: int = 5) -> int:
        """
        Recover jobs stuck in 'processing' state.

        Handles workers that crashed without completing or failing a job.
        Jobs older than timeout_minutes are returned to 'pending' (or 'dead'
        if max attempts exceeded).
        """
        count = await self.database.fetchval(
            "SELECT recover_stale_jobs($1)", timeout_minutes
        )

        if count:
            logger.warning(f"Recovered {count} stale jobs")

        return count or 0

    async def get_stats(self) -> dict:
        """Counts by status plus oldest/newest timestamps and average attempts."""
        records = await self.database.fetch("SELECT * FROM pipeline_job_stats")

        stats = {
            "by_status": {},
            "total": 0,
        }

        for record in records:
            count = record["count"]
            stats["by_status"][record["status"]] = {
                "count": count,
                "oldest_item": record["oldest_item"].isoformat() if record["oldest_item"] else None,
                "newest_item": record["newest_item"].isoformat() if record["newest_item"] else None,
                "avg_attempts": float(record["avg_attempts"]) if record["avg_attempts"] else 0,
            }
            stats["total"] += count

        return stats

    async def get_pending_count(self) -> int:
        return await self.database.fetchval(
            "SELECT COUNT(*) FROM pipeline_jobs WHERE status = 'pending'"
        )

    async def get_job(self, job_id: str) -> Optional[PipelineJob]:
        record = await self.database.fetchrow(
            "SELECT * FROM pipeline_jobs WHERE id = $1", uuid.UUID(job_id)
        )

        if record is None:
            return None

        return PipelineJob.from_record(record)

    async def get_recent_jobs(
        self,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> List[PipelineJob]:
        if status:
            query = """
                SELECT * FROM pipeline_jobs
                WHERE status = $1::job_status
                ORDER BY created_at DESC
                LIMIT $2
            """
            records = await self.database.fetch(query, status, limit)
        else:
            query = """
                SELECT * FROM pipeline_jobs
                ORDER BY created_at DESC
                LIMIT $1
            """
            records = await self.database.fetch(query, limit)

        return [PipelineJob.from_record(r) for r in records]

    async def get_dead_letter_jobs(self, limit: int = 50) -> List[PipelineJob]:
        return await self.get_recent_jobs(limit=limit, status="dead")

    async def retry_dead_job(self, job_id: str) -> bool:
        """Reset a dead job to 'pending' with attempts back at 0."""
        query = """
            UPDATE pipeline_jobs
            SET status = 'pending',
                attempts = 0,
                last_error = NULL,
                processing_started_at = NULL,
                worker_id = NULL,
                available_at = NOW(),
                updated_at = NOW()
            WHERE id = $1 AND status = 'dead'
        """

        result = await self.database.execute(query, uuid.UUID(job_id))
        success = affected_rows(result) == 1

        if success:
            logger.info(f"Retried dead job {job_id}")

        return success

    async def purge_completed(self, older_than_hours: int = 24) -> int:
        """Delete completed jobs older than the given number of hours."""
        query = """
            DELETE FROM pipeline_jobs
            WHERE status = 'completed'
              AND completed_at < NOW() - make_interval(hours => $1)
        """

        count = affected_rows(await self.database.execute(query, older_than_hours))

        if count > 0:
            logger.info(f"Purged {count} completed jobs older than {older_than_hours} hours")

        return count

    async def delete_job(self, job_id: str) -> bool:
        """Permanently remove a job from the queue."""
        try:
            result = await self.database.execute(
                "DELETE FROM pipeline_jobs WHERE id = $1", uuid.UUID(job_id)
            )
        except (ValueError, OSError) as e:
            logger.error(f"Failed to delete job {job_id}: {e}")
            return False
        return affected_rows(result) == 1
