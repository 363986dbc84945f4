"""
Punch list items and contractor assignments.

Item status flow: ``extracted -> pending -> assigned -> completed`` (a decline
sends an assigned item back to ``pending``). Assignments are created inside the
same transaction that flips the item to ``assigned``; the partial unique index
``uq_active_assignment_per_item`` rejects a second non-declined assignment.
"""

import json
import logging
import uuid
from typing import Iterable, List, Optional, Sequence

import asyncpg

from llm.schemas import ExtractedPunchListItem
from renovation_advisor.models import PunchListAssignment, PunchListItem
from storage.db import Database, affected_rows, record_to_dict

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = ("extracted", "pending")


def _item(record) -> PunchListItem:
    return PunchListItem.model_validate(record_to_dict(record))


def _assignment(record) -> PunchListAssignment:
    return PunchListAssignment.model_validate(record_to_dict(record))


class PunchListStore:
    def __init__(self, database: Database):
        self.database = database

    # Items

    async def save_extraction(
        self,
        project_id: str,
        voice_message_id: str,
        items: Iterable[ExtractedPunchListItem],
        summary: str = "",
    ) -> Optional[List[PunchListItem]]:
        """
        Insert the extracted items and mark the voice message's extraction done,
        in one transaction. Returns None, writing nothing, when the extraction
        claim is no longer held.
        """
        created = []
        async with self.database.transaction() as conn:
            held = await conn.fetchval(
                """
                SELECT 1 FROM voice_extractions
                WHERE voice_message_id = $1 AND status = 'extracting'
                FOR UPDATE
                """,
                uuid.UUID(voice_message_id),
            )
            if not held:
                return None
            for item in items:
                record = await conn.fetchrow(
                    """
                    INSERT INTO punch_list_items
                        (project_id, voice_message_id, description, room, trade_category,
                         priority, estimated_hours, notes, materials_needed,
                         confidence_score, raw_extraction)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb)
                    RETURNING *
                    """,
                    uuid.UUID(project_id),
                    uuid.UUID(voice_message_id),
                    item.item,
                    item.room,
                    item.trade,
                    item.priority,
                    item.estimated_hours,
                    item.notes,
                    list(item.materials_needed),
                    item.confidence_score,
                    json.dumps(item.model_dump()),
                )
                created.append(_item(record))
            await conn.execute(
                """
                UPDATE voice_extractions
                SET status = 'extracted', item_count = $2, summary = $3,
                    error_message = NULL, updated_at = NOW()
                WHERE voice_message_id = $1
                """,
                uuid.UUID(voice_message_id),
                len(created),
                summary or None,
            )
        return created

    async def get_item(self, item_id: str) -> Optional[PunchListItem]:
        record = await self.database.fetchrow(
            "SELECT * FROM punch_list_items WHERE id = $1", uuid.UUID(item_id)
        )
        return _item(record) if record else None

    async def list_assignable(self, limit: int) -> List[PunchListItem]:
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_items
            WHERE status = ANY($1::text[])
            ORDER BY created_at
            LIMIT $2
            """,
            list(ASSIGNABLE_STATUSES),
            limit,
        )
        return [_item(r) for r in records]

    async def list_items(
        self,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[PunchListItem]:
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_items
            WHERE ($1::uuid IS NULL OR project_id = $1)
              AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3
            """,
            uuid.UUID(project_id) if project_id else None,
            status,
            limit,
        )
        return [_item(r) for r in records]

    async def mark_pending(self, item_id: str) -> bool:
        """Move a freshly extracted item that found no contractor to 'pending'."""
        status = await self.database.execute(
            """
            UPDATE punch_list_items
            SET status = 'pending', updated_at = NOW()
            WHERE id = $1 AND status = 'extracted'
            """,
            uuid.UUID(item_id),
        )
        return affected_rows(status) == 1

    # Assignments

    async def create_assignment(
        self,
        item: PunchListItem,
        contractor_id: str,
        method: str,
        reason: str,
    ) -> Optional[PunchListAssignment]:
        """
        Claim the item and record the assignment in one transaction.

        Returns None when the item is no longer assignable or already holds an
        active assignment (another run got there first).
        """
        try:
            async with self.database.transaction() as conn:
                claimed = await conn.execute(
                    """
                    UPDATE punch_list_items
                    SET status = 'assigned', updated_at = NOW()
                    WHERE id = $1 AND status = ANY($2::text[])
                    """,
                    uuid.UUID(item.id),
                    list(ASSIGNABLE_STATUSES),
                )
                if affected_rows(claimed) != 1:
                    return None
                record = await conn.fetchrow(
                    """
                    INSERT INTO punch_list_assignments
                        (punch_list_item_id, contractor_id, project_id,
                         assignment_method, assignment_reason)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    """,
                    uuid.UUID(item.id),
                    uuid.UUID(contractor_id),
                    uuid.UUID(item.project_id),
                    method,
                    reason,
                )
        except asyncpg.UniqueViolationError:
            logger.warning(f"Item {item.id} already has an active assignment")
            return None
        return _assignment(record)

    async def declined_contractor_ids(self, item_id: str) -> set:
        records = await self.database.fetch(
            """
            SELECT contractor_id FROM punch_list_assignments
            WHERE punch_list_item_id = $1 AND contractor_response = 'declined'
            """,
            uuid.UUID(item_id),
        )
        return {str(r["contractor_id"]) for r in records}

    async def get_assignment(self, assignment_id: str) -> Optional[PunchListAssignment]:
        record = await self.database.fetchrow(
            "SELECT * FROM punch_list_assignments WHERE id = $1", uuid.UUID(assignment_id)
        )
        return _assignment(record) if record else None

    async def list_assignments(
        self,
        project_id: Optional[str] = None,
        response: Optional[str] = None,
        limit: int = 50,
    ) -> List[PunchListAssignment]:
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_assignments
            WHERE ($1::uuid IS NULL OR project_id = $1)
              AND ($2::text IS NULL OR contractor_response = $2)
            ORDER BY created_at DESC
            LIMIT $3
            """,
            uuid.UUID(project_id) if project_id else None,
            response,
            limit,
        )
        return [_assignment(r) for r in records]

    async def list_undispatched(self, limit: int, claim_timeout_minutes: int) -> List[PunchListAssignment]:
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_assignments
            WHERE contractor_response = 'pending'
              AND sent_at IS NULL
              AND (dispatch_claimed_at IS NULL
                   OR dispatch_claimed_at < NOW() - make_interval(mins => $2))
            ORDER BY created_at
            LIMIT $1
            """,
            limit,
            claim_timeout_minutes,
        )
        return [_assignment(r) for r in records]

    async def claim_dispatch(self, assignment_id: str, claim_timeout_minutes: int) -> bool:
        status = await self.database.execute(
            """
            UPDATE punch_list_assignments
            SET dispatch_claimed_at = NOW(), updated_at = NOW()
            WHERE id = $1
              AND sent_at IS NULL
              AND (dispatch_claimed_at IS NULL
                   OR dispatch_claimed_at < NOW() - make_interval(mins => $2))
            """,
            uuid.UUID(assignment_id),
            claim_timeout_minutes,
        )
        return affected_rows(status) == 1

    async def mark_sent(self, assignment_id: str, sms_message_id: Optional[str], sms_status: str) -> None:
        await self.database.execute(
            """
            UPDATE punch_list_assignments
            SET sent_at = NOW(), sms_message_id = $2, sms_status = $3, updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(assignment_id),
            sms_message_id,
            sms_status,
        )

    async def release_dispatch(self, assignment_id: str, sms_status: str) -> None:
        await self.database.execute(
            """
            UPDATE punch_list_assignments
            SET dispatch_claimed_at = NULL, sms_status = $2, updated_at = NOW()
            WHERE id = $1 AND sent_at IS NULL
            """,
            uuid.UUID(assignment_id),
            sms_status,
        )

    async def list_reminder_due(self, limit: int, older_than_minutes: int) -> List[PunchListAssignment]:
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_assignments
            WHERE contractor_response = 'pending'
              AND sent_at IS NOT NULL
              AND reminder_sent_at IS NULL
              AND sent_at < NOW() - make_interval(mins => $2)
            ORDER BY sent_at
            LIMIT $1
            """,
            limit,
            older_than_minutes,
        )
        return [_assignment(r) for r in records]

    async def claim_reminder(self, assignment_id: str) -> bool:
        status = await self.database.execute(
            """
            UPDATE punch_list_assignments
            SET reminder_sent_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND reminder_sent_at IS NULL AND contractor_response = 'pending'
            """,
            uuid.UUID(assignment_id),
        )
        return affected_rows(status) == 1

    async def release_reminder(self, assignment_id: str) -> None:
        await self.database.execute(
            """
            UPDATE punch_list_assignments
            SET reminder_sent_at = NULL, updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(assignment_id),
        )

    async def open_assignments_for_contractor(
        self, contractor_id: str, responses: Sequence[str]
    ) -> List[PunchListAssignment]:
        """Assignments in one of ``responses``, most recent first."""
        records = await self.database.fetch(
            """
            SELECT * FROM punch_list_assignments
            WHERE contractor_id = $1 AND contractor_response = ANY($2::text[])
            ORDER BY created_at DESC
            """,
            uuid.UUID(contractor_id),
            list(responses),
        )
        return [_assignment(r) for r in records]

    async def update_response(
        self,
        assignment_id: str,
        expected: str,
        new_response: str,
        notes: Optional[str] = None,
    ) -> Optional[PunchListAssignment]:
        """
        Compare-and-swap the contractor response and apply the item side effect.

        accepted  -> item stays 'assigned'
        declined  -> item returns to 'pending' for reassignment
        completed -> item 'completed' with completed_at set
        """
        async with self.database.transaction() as conn:
            record = await conn.fetchrow(
                """
                UPDATE punch_list_assignments
                SET contractor_response = $3,
                    contractor_notes = COALESCE($4, contractor_notes),
                    responded_at = NOW(),
                    updated_at = NOW()
                WHERE id = $1 AND contractor_response = $2
                RETURNING *
                """,
                uuid.UUID(assignment_id),
                expected,
                new_response,
                notes,
            )
            if record is None:
                return None
            item_id = record["punch_list_item_id"]
            if new_response == "declined":
                await conn.execute(
                    """
                    UPDATE punch_list_items
                    SET status = 'pending', updated_at = NOW()
                    WHERE id = $1 AND status = 'assigned'
                    """,
                    item_id,
                )
            elif new_response == "completed":
                await conn.execute(
                    """
                    UPDATE punch_list_items
                    SET status = 'completed', completed_at = NOW(), updated_at = NOW()
                    WHERE id = $1 AND status <> 'completed'
                    """,
                    item_id,
                )
        return _assignment(record)

    async def append_note(
        self, assignment_id: str, expected: str, note: str
    ) -> Optional[PunchListAssignment]:
        """Append a line to contractor_notes while the response is still ``expected``."""
        record = await self.database.fetchrow(
            """
            UPDATE punch_list_assignments
            SET contractor_notes = CONCAT_WS(E'\\n', contractor_notes, $3::text),
                updated_at = NOW()
            WHERE id = $1 AND contractor_response = $2
            RETURNING *
            """,
            uuid.UUID(assignment_id),
            expected,
            note,
        )
        return _assignment(record) if record else None

    # Diagnostics

    async def item_status_counts(self) -> dict:
        records = await self.database.fetch(
            "SELECT status, COUNT(*) AS count FROM punch_list_items GROUP BY status"
        )
        return {r["status"]: r["count"] for r in records}

    async def extraction_stats(self) -> dict:
        async with self.database.connection() as conn:
            by_status = await conn.fetch(
                "SELECT status, COUNT(*) AS count FROM voice_extractions GROUP BY status"
            )
            by_trade = await conn.fetch(
                "SELECT trade_category, COUNT(*) AS count FROM punch_list_items GROUP BY trade_category"
            )
            by_priority = await conn.fetch(
                "SELECT priority, COUNT(*) AS count FROM punch_list_items GROUP BY priority"
            )
            avg_confidence = await conn.fetchval(
                "SELECT AVG(confidence_score) FROM punch_list_items"
            )
        return {
            "extractions_by_status": {r["status"]: r["count"] for r in by_status},
            "items_by_trade": {r["trade_category"]: r["count"] for r in by_trade},
            "items_by_priority": {r["priority"]: r["count"] for r in by_priority},
            "average_confidence": float(avg_confidence) if avg_confidence is not None else None,
        }

    async def assignment_stats(self) -> dict:
        async with self.database.connection() as conn:
            by_response = await conn.fetch(
                """
                SELECT contractor_response, COUNT(*) AS count
                FROM punch_list_assignments GROUP BY contractor_response
                """
            )
            by_method = await conn.fetch(
                """
                SELECT assignment_method, COUNT(*) AS count
                FROM punch_list_assignments GROUP BY assignment_method
                """
            )
        responses = {r["contractor_response"]: r["count"] for r in by_response}
        return summarize_assignments(
            responses, {r["assignment_method"]: r["count"] for r in by_method}
        )


def summarize_assignments(by_response: dict, by_method: dict) -> dict:
    total = sum(by_response.values())
    completed = by_response.get("completed", 0)
    return {
        "total": total,
        "by_response": by_response,
        "by_method": by_method,
        "pending": by_response.get("pending", 0),
        "completion_rate": round(completed / total, 3) if total else 0.0,
    }
